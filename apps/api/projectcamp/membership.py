from __future__ import annotations

import logging

from sqlalchemy import ColumnElement, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from projectcamp.errors import Conflict, InvariantViolation, NotFound, PreconditionFailed
from projectcamp.models import Project, ProjectMember, User
from projectcamp.roles import Role

log = logging.getLogger("projectcamp.membership")

LAST_ADMIN_MESSAGE = "Cannot remove the last admin from the project. Please assign a new admin first."


async def lock_project(db: AsyncSession, project_id: str) -> Project | None:
  # Row lock serializes membership changes per project on postgres.
  res = await db.execute(select(Project).where(Project.id == project_id).with_for_update())
  return res.scalar_one_or_none()


async def count_by_project_and_role(db: AsyncSession, project_id: str, role: Role) -> int:
  res = await db.execute(
    select(func.count(ProjectMember.id)).where(ProjectMember.project_id == project_id, ProjectMember.role == role.value)
  )
  return int(res.scalar_one())


async def list_by_project(db: AsyncSession, project_id: str) -> list[tuple[ProjectMember, User]]:
  res = await db.execute(
    select(ProjectMember, User)
    .join(User, User.id == ProjectMember.user_id)
    .where(ProjectMember.project_id == project_id)
    .order_by(ProjectMember.created_at.asc())
  )
  return [(m, u) for m, u in res.all()]


async def list_by_user(db: AsyncSession, user_id: str) -> list[tuple[Project, ProjectMember]]:
  res = await db.execute(
    select(Project, ProjectMember)
    .join(ProjectMember, ProjectMember.project_id == Project.id)
    .where(ProjectMember.user_id == user_id)
    .order_by(Project.updated_at.desc())
  )
  return [(p, m) for p, m in res.all()]


async def get_in_project(
  db: AsyncSession,
  *,
  project_id: str,
  membership_id: str,
  for_update: bool = False,
) -> ProjectMember:
  stmt = select(ProjectMember).where(ProjectMember.id == membership_id)
  if for_update:
    # Reload over whatever this session already holds so the role is current.
    stmt = stmt.with_for_update().execution_options(populate_existing=True)
  res = await db.execute(stmt)
  m = res.scalar_one_or_none()
  if not m or m.project_id != project_id:
    raise NotFound("Member not found in this project.")
  return m


async def is_member(db: AsyncSession, *, project_id: str, user_id: str) -> bool:
  res = await db.execute(
    select(ProjectMember.id).where(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
  )
  return res.scalar_one_or_none() is not None


async def add(db: AsyncSession, *, user: User, project_id: str, role: Role) -> ProjectMember:
  """Create a membership edge and commit it."""
  if not user.is_email_verified:
    raise PreconditionFailed("Cannot add an unverified user. The user must verify their email first.")
  if await is_member(db, project_id=project_id, user_id=user.id):
    raise Conflict("User is already a member of this project.")
  m = ProjectMember(project_id=project_id, user_id=user.id, role=role.value)
  db.add(m)
  try:
    await db.commit()
  except IntegrityError as exc:
    await db.rollback()
    raise Conflict("User is already a member of this project.") from exc
  return m


def _keeps_an_admin(project_id: str, membership_id: str) -> ColumnElement[bool]:
  """Row condition: the row is not an admin, or another admin remains."""
  other = aliased(ProjectMember)
  others = (
    select(func.count(other.id))
    .where(other.project_id == project_id, other.role == Role.ADMIN.value, other.id != membership_id)
    .scalar_subquery()
  )
  return or_(ProjectMember.role != Role.ADMIN.value, others >= 1)


async def ensure_not_last_admin(db: AsyncSession, membership: ProjectMember) -> None:
  if membership.role != Role.ADMIN.value:
    return
  admins = await count_by_project_and_role(db, membership.project_id, Role.ADMIN)
  if admins <= 1:
    log.info("last-admin guard rejected change project=%s membership=%s", membership.project_id, membership.id)
    raise InvariantViolation(LAST_ADMIN_MESSAGE)


async def update_role(db: AsyncSession, *, project_id: str, membership_id: str, new_role: Role) -> ProjectMember:
  """Change a member's role, refusing to leave the project without an admin.

  The project row is locked and the membership re-read under that lock before
  the admin count is checked. The write itself is conditional on the row as it
  is stored now, so a change that lost a race matches nothing and is rejected.
  """
  guarded = new_role != Role.ADMIN
  try:
    await lock_project(db, project_id)
    current = await get_in_project(db, project_id=project_id, membership_id=membership_id, for_update=True)
    if guarded:
      await ensure_not_last_admin(db, current)

    stmt = update(ProjectMember).where(ProjectMember.id == membership_id)
    if guarded:
      stmt = stmt.where(_keeps_an_admin(project_id, membership_id))
    res = await db.execute(stmt.values(role=new_role.value).execution_options(synchronize_session=False))
    if res.rowcount != 1:
      if not guarded:
        raise NotFound("Member not found in this project.")
      log.info("last-admin guard rejected concurrent change project=%s membership=%s", project_id, membership_id)
      raise InvariantViolation(LAST_ADMIN_MESSAGE)
    await db.commit()
  except Exception:
    await db.rollback()
    raise

  await db.refresh(current)
  return current


async def delete_guarded(db: AsyncSession, *, project_id: str, membership_id: str) -> None:
  """Delete a membership inside the caller's transaction, keeping one admin."""
  stmt = delete(ProjectMember).where(ProjectMember.id == membership_id, _keeps_an_admin(project_id, membership_id))
  res = await db.execute(stmt.execution_options(synchronize_session=False))
  if res.rowcount != 1:
    log.info("last-admin guard rejected concurrent removal project=%s membership=%s", project_id, membership_id)
    raise InvariantViolation(LAST_ADMIN_MESSAGE)
