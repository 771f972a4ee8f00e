from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from projectcamp import cascade, membership
from projectcamp.deps import authorize, get_current_user, get_db, parse_id
from projectcamp.errors import PROJECT_NOT_FOUND, Conflict, NotFound
from projectcamp.models import Project, ProjectMember, User
from projectcamp.roles import ADMIN_ONLY, ANY_MEMBER, Role
from projectcamp.schemas import (
  DeletedOut,
  MemberAddIn,
  MemberOut,
  MemberRoleIn,
  ProjectCreateIn,
  ProjectOut,
  ProjectUpdateIn,
)
from projectcamp.serializers import member_out, project_out, users_by_id
from projectcamp.storage import BlobStorage, get_blob_storage

log = logging.getLogger("projectcamp.projects")

router = APIRouter(prefix="/api/v1/projects", tags=["projects"])

NAME_TAKEN = "A project with this name already exists."


async def _get_project(db: AsyncSession, project_id: str) -> Project:
  res = await db.execute(select(Project).where(Project.id == project_id))
  p = res.scalar_one_or_none()
  if not p:
    raise NotFound(PROJECT_NOT_FOUND)
  return p


async def _name_taken(db: AsyncSession, name: str, *, exclude_id: str | None = None) -> bool:
  q = select(Project.id).where(Project.name == name)
  if exclude_id:
    q = q.where(Project.id != exclude_id)
  res = await db.execute(q)
  return res.scalar_one_or_none() is not None


async def _project_out(db: AsyncSession, p: Project, *, role: str | None = None) -> ProjectOut:
  users = await users_by_id(db, [p.created_by])
  return project_out(p, creator=users.get(p.created_by), role=role)


@router.get("", response_model=list[ProjectOut])
async def list_projects(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[ProjectOut]:
  rows = await membership.list_by_user(db, user.id)
  users = await users_by_id(db, [p.created_by for p, _ in rows])
  return [project_out(p, creator=users.get(p.created_by), role=m.role) for p, m in rows]


@router.post("", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
async def create_project(
  payload: ProjectCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ProjectOut:
  if await _name_taken(db, payload.name):
    raise Conflict(NAME_TAKEN)

  p = Project(name=payload.name, description=payload.description, created_by=user.id)
  db.add(p)
  try:
    await db.flush()
    # creator membership commits with the project or not at all
    db.add(ProjectMember(project_id=p.id, user_id=user.id, role=Role.ADMIN.value))
    await db.commit()
  except IntegrityError as exc:
    await db.rollback()
    raise Conflict(NAME_TAKEN) from exc

  log.info("project created project=%s by=%s", p.id, user.id)
  return project_out(p, creator=user, role=Role.ADMIN.value)


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> ProjectOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ANY_MEMBER)
  p = await _get_project(db, m.project_id)
  return await _project_out(db, p, role=m.role)


@router.put("/{project_id}", response_model=ProjectOut)
async def update_project(
  project_id: str,
  payload: ProjectUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ProjectOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_ONLY)
  p = await _get_project(db, m.project_id)

  if payload.name is not None and payload.name != p.name:
    if await _name_taken(db, payload.name, exclude_id=p.id):
      raise Conflict(NAME_TAKEN)
    p.name = payload.name
  if payload.description is not None:
    p.description = payload.description
  try:
    await db.commit()
  except IntegrityError as exc:
    await db.rollback()
    raise Conflict(NAME_TAKEN) from exc
  return await _project_out(db, p, role=m.role)


@router.delete("/{project_id}", response_model=DeletedOut)
async def delete_project(
  project_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  storage: BlobStorage = Depends(get_blob_storage),
) -> DeletedOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_ONLY)
  await cascade.delete_project(db, project_id=m.project_id, storage=storage)
  return DeletedOut(id=m.project_id)


@router.post("/{project_id}/members", response_model=MemberOut, status_code=status.HTTP_201_CREATED)
async def add_member(
  project_id: str,
  payload: MemberAddIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> MemberOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_ONLY)
  res = await db.execute(select(User).where(User.email == payload.email.strip().lower()))
  target = res.scalar_one_or_none()
  if not target:
    raise NotFound("User with this email does not exist.")

  added = await membership.add(db, user=target, project_id=m.project_id, role=Role(payload.role))
  log.info("member added project=%s user=%s role=%s", m.project_id, target.id, added.role)
  return member_out(added, target)


@router.get("/{project_id}/members", response_model=list[MemberOut])
async def list_members(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[MemberOut]:
  m = await authorize(db, principal=user, project_id=project_id, required=ANY_MEMBER)
  return [member_out(pm, u) for pm, u in await membership.list_by_project(db, m.project_id)]


@router.put("/{project_id}/members/{member_id}/role", response_model=MemberOut)
async def update_member_role(
  project_id: str,
  member_id: str,
  payload: MemberRoleIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> MemberOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_ONLY)
  pid = m.project_id
  updated = await membership.update_role(
    db, project_id=pid, membership_id=parse_id(member_id, label="memberId"), new_role=Role(payload.role)
  )
  users = await users_by_id(db, [updated.user_id])
  log.info("member role changed project=%s membership=%s role=%s", pid, updated.id, updated.role)
  return member_out(updated, users[updated.user_id])


@router.delete("/{project_id}/members/{member_id}", response_model=DeletedOut)
async def remove_member(
  project_id: str,
  member_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> DeletedOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_ONLY)
  removed = await cascade.remove_member(db, project_id=m.project_id, membership_id=parse_id(member_id, label="memberId"))
  return DeletedOut(id=removed.id)
