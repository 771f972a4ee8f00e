from __future__ import annotations

import uuid
from typing import AsyncIterator

from fastapi import Cookie, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from projectcamp.db import SessionLocal
from projectcamp.errors import PROJECT_NOT_FOUND, Forbidden, InvalidIdentifier, NotAuthenticated, NotAuthorized, NotFound
from projectcamp.models import ProjectMember, SubTask, Task, User
from projectcamp.roles import Role
from projectcamp.security import ACCESS_COOKIE_NAME, decode_access_token


async def get_db() -> AsyncIterator[AsyncSession]:
  async with SessionLocal() as session:
    yield session


async def get_current_user(
  request: Request,
  db: AsyncSession = Depends(get_db),
  access_token: str | None = Cookie(default=None, alias=ACCESS_COOKIE_NAME),
) -> User:
  token = access_token
  if not token:
    auth = request.headers.get("authorization")
    if auth and auth.lower().startswith("bearer "):
      token = auth.split(" ", 1)[1].strip()
  if not token:
    raise NotAuthenticated("Not authenticated")

  claims = decode_access_token(token)
  res = await db.execute(select(User).where(User.id == claims["sub"]))
  u = res.scalar_one_or_none()
  if not u:
    raise NotAuthenticated("User not found")
  return u


def parse_id(value: str, *, label: str = "id") -> str:
  try:
    return str(uuid.UUID(str(value)))
  except (TypeError, ValueError, AttributeError) as exc:
    raise InvalidIdentifier(f"Invalid {label} format.", errors=[{"field": label, "message": "must be a UUID"}]) from exc


async def authorize(
  db: AsyncSession,
  *,
  principal: User,
  project_id: str,
  required: frozenset[Role],
) -> ProjectMember:
  """Resolve the principal's membership on a project or fail.

  Every project-scoped handler calls this before reading or writing project
  data. A missing membership and a missing project fail the same way.
  Membership is re-read on every call; nothing is cached across requests.
  """
  pid = parse_id(project_id, label="projectId")
  res = await db.execute(
    select(ProjectMember).where(ProjectMember.project_id == pid, ProjectMember.user_id == principal.id)
  )
  m = res.scalar_one_or_none()
  if not m:
    raise NotAuthorized(PROJECT_NOT_FOUND)
  try:
    role = Role(m.role)
  except ValueError as exc:
    raise Forbidden("You do not have permission to perform this action.") from exc
  if not role.allows(required):
    raise Forbidden("You do not have permission to perform this action.")
  return m


async def get_task_in_project(db: AsyncSession, *, project_id: str, task_id: str) -> Task:
  tid = parse_id(task_id, label="taskId")
  res = await db.execute(select(Task).where(Task.id == tid, Task.project_id == project_id))
  t = res.scalar_one_or_none()
  if not t:
    raise NotFound("Task not found in this project.")
  return t


async def get_subtask_in_task(db: AsyncSession, *, task_id: str, subtask_id: str) -> SubTask:
  sid = parse_id(subtask_id, label="subTaskId")
  res = await db.execute(select(SubTask).where(SubTask.id == sid, SubTask.task_id == task_id))
  s = res.scalar_one_or_none()
  if not s:
    raise NotFound("Subtask not found for this task.")
  return s


def client_ip(request: Request) -> str:
  return request.client.host if request.client else "unknown"
