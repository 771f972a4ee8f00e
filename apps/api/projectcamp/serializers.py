from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from projectcamp.models import Project, ProjectMember, ProjectNote, SubTask, Task, TaskAttachment, User
from projectcamp.schemas import AttachmentOut, MemberOut, NoteOut, ProjectOut, SubTaskOut, TaskOut, UserOut, UserSummary


def user_summary(u: User | None) -> UserSummary | None:
  if u is None:
    return None
  return UserSummary(id=u.id, username=u.username, fullname=u.fullname, email=u.email)


def user_out(u: User) -> UserOut:
  return UserOut(
    id=u.id,
    username=u.username,
    fullname=u.fullname,
    email=u.email,
    role=u.role,
    isEmailVerified=bool(u.is_email_verified),
    createdAt=u.created_at,
    updatedAt=u.updated_at,
  )


async def users_by_id(db: AsyncSession, ids: Iterable[str | None]) -> dict[str, User]:
  wanted = {i for i in ids if i}
  if not wanted:
    return {}
  res = await db.execute(select(User).where(User.id.in_(wanted)))
  return {u.id: u for u in res.scalars().all()}


def project_out(p: Project, *, creator: User | None = None, role: str | None = None) -> ProjectOut:
  return ProjectOut(
    id=p.id,
    name=p.name,
    description=p.description,
    createdBy=user_summary(creator),
    role=role,
    createdAt=p.created_at,
    updatedAt=p.updated_at,
  )


def member_out(m: ProjectMember, u: User) -> MemberOut:
  return MemberOut(
    id=m.id,
    projectId=m.project_id,
    user=user_summary(u),
    role=m.role,
    createdAt=m.created_at,
    updatedAt=m.updated_at,
  )


def attachment_out(a: TaskAttachment) -> AttachmentOut:
  return AttachmentOut(
    id=a.id,
    url=a.url,
    externalId=a.external_id,
    filename=a.filename,
    mimetype=a.mimetype,
    size=a.size,
    createdAt=a.created_at,
  )


async def tasks_out(db: AsyncSession, tasks: list[Task]) -> list[TaskOut]:
  """Render tasks with their user summaries and attachments in two extra queries."""
  if not tasks:
    return []
  users = await users_by_id(db, [i for t in tasks for i in (t.assigned_to, t.assigned_by)])
  ares = await db.execute(
    select(TaskAttachment)
    .where(TaskAttachment.task_id.in_([t.id for t in tasks]))
    .order_by(TaskAttachment.created_at.asc())
  )
  by_task: dict[str, list[AttachmentOut]] = {}
  for a in ares.scalars().all():
    by_task.setdefault(a.task_id, []).append(attachment_out(a))

  return [
    TaskOut(
      id=t.id,
      projectId=t.project_id,
      title=t.title,
      description=t.description,
      status=t.status,
      assignedTo=user_summary(users.get(t.assigned_to or "")),
      assignedBy=user_summary(users.get(t.assigned_by or "")),
      attachments=by_task.get(t.id, []),
      createdAt=t.created_at,
      updatedAt=t.updated_at,
    )
    for t in tasks
  ]


async def task_out(db: AsyncSession, task: Task) -> TaskOut:
  return (await tasks_out(db, [task]))[0]


def subtask_out(s: SubTask) -> SubTaskOut:
  return SubTaskOut(
    id=s.id,
    taskId=s.task_id,
    title=s.title,
    isCompleted=bool(s.is_completed),
    createdBy=s.created_by,
    createdAt=s.created_at,
    updatedAt=s.updated_at,
  )


async def notes_out(db: AsyncSession, notes: list[ProjectNote]) -> list[NoteOut]:
  users = await users_by_id(db, [n.created_by for n in notes])
  return [
    NoteOut(
      id=n.id,
      projectId=n.project_id,
      content=n.content,
      createdBy=user_summary(users.get(n.created_by or "")),
      createdAt=n.created_at,
      updatedAt=n.updated_at,
    )
    for n in notes
  ]
