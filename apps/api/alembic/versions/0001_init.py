"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _id() -> sa.Column:
  return sa.Column("id", sa.String(36), primary_key=True)


def _timestamps() -> list[sa.Column]:
  return [
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  ]


def upgrade() -> None:
  op.create_table(
    "users",
    _id(),
    sa.Column("email", sa.String(320), nullable=False),
    sa.Column("username", sa.String(64), nullable=False),
    sa.Column("fullname", sa.String(120), nullable=True),
    sa.Column("password_hash", sa.String(), nullable=False),
    sa.Column("role", sa.String(32), nullable=False),
    sa.Column("is_email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("email_verification_token_hash", sa.String(64), nullable=True),
    sa.Column("email_verification_expiry", sa.DateTime(timezone=True), nullable=True),
    sa.Column("forgot_password_token_hash", sa.String(64), nullable=True),
    sa.Column("forgot_password_expiry", sa.DateTime(timezone=True), nullable=True),
    sa.Column("refresh_token_hash", sa.String(64), nullable=True),
    *_timestamps(),
  )
  op.create_index("ix_users_email", "users", ["email"], unique=True)
  op.create_index("ix_users_email_verification_token_hash", "users", ["email_verification_token_hash"], unique=False)
  op.create_index("ix_users_forgot_password_token_hash", "users", ["forgot_password_token_hash"], unique=False)

  op.create_table(
    "projects",
    _id(),
    sa.Column("name", sa.String(200), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    *_timestamps(),
  )
  op.create_index("ix_projects_name", "projects", ["name"], unique=True)
  op.create_index("ix_projects_created_by", "projects", ["created_by"], unique=False)

  op.create_table(
    "project_members",
    _id(),
    sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id"), nullable=False),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("role", sa.String(32), nullable=False),
    *_timestamps(),
    sa.UniqueConstraint("project_id", "user_id", name="ux_project_member_project_user"),
  )
  op.create_index("ix_project_members_project_id", "project_members", ["project_id"], unique=False)
  op.create_index("ix_project_members_user_id", "project_members", ["user_id"], unique=False)

  op.create_table(
    "tasks",
    _id(),
    sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id"), nullable=False),
    sa.Column("title", sa.String(200), nullable=False),
    sa.Column("description", sa.Text(), nullable=False, server_default=""),
    sa.Column("assigned_to", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("assigned_by", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("status", sa.String(32), nullable=False, server_default="todo"),
    *_timestamps(),
  )
  op.create_index("ix_tasks_project_id", "tasks", ["project_id"], unique=False)
  op.create_index("ix_tasks_assigned_to", "tasks", ["assigned_to"], unique=False)

  op.create_table(
    "task_attachments",
    _id(),
    sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id"), nullable=False),
    sa.Column("url", sa.String(), nullable=False),
    sa.Column("external_id", sa.String(), nullable=False),
    sa.Column("filename", sa.String(), nullable=False),
    sa.Column("mimetype", sa.String(), nullable=False),
    sa.Column("size", sa.Integer(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_task_attachments_task_id", "task_attachments", ["task_id"], unique=False)

  op.create_table(
    "subtasks",
    _id(),
    sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id"), nullable=False),
    sa.Column("title", sa.String(200), nullable=False),
    sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
    *_timestamps(),
  )
  op.create_index("ix_subtasks_task_id", "subtasks", ["task_id"], unique=False)

  op.create_table(
    "project_notes",
    _id(),
    sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id"), nullable=False),
    sa.Column("content", sa.Text(), nullable=False),
    sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
    *_timestamps(),
  )
  op.create_index("ix_project_notes_project_id", "project_notes", ["project_id"], unique=False)


def downgrade() -> None:
  for table in ("project_notes", "subtasks", "task_attachments", "tasks", "project_members", "projects", "users"):
    op.drop_table(table)
