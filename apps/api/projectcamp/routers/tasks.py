from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from projectcamp import cascade, membership
from projectcamp.config import settings
from projectcamp.deps import authorize, get_current_user, get_db, get_task_in_project, parse_id
from projectcamp.errors import InvalidInput, NotFound, PayloadTooLarge, UpstreamFailure
from projectcamp.models import Task, TaskAttachment, User
from projectcamp.roles import ADMIN_ONLY, ADMIN_OR_MEMBER
from projectcamp.schemas import DeletedOut, TaskAssignIn, TaskCreateIn, TaskOut, TaskStatusIn, TaskUpdateIn
from projectcamp.serializers import task_out, tasks_out
from projectcamp.storage import BlobStorage, BlobStorageError, StoredBlob, get_blob_storage

log = logging.getLogger("projectcamp.tasks")

router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])


async def _assignee_id(db: AsyncSession, *, project_id: str, raw: str) -> str:
  user_id = parse_id(raw, label="assignedTo")
  # Held until the task write commits, so a concurrent member removal cannot slip in between.
  await membership.lock_project(db, project_id)
  if not await membership.is_member(db, project_id=project_id, user_id=user_id):
    raise InvalidInput(
      "The user you are assigning this task to is not a member of the project.",
      errors=[{"field": "assignedTo", "message": "must be a member of the project"}],
    )
  return user_id


@router.post("/{project_id}", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
async def create_task(
  project_id: str,
  payload: TaskCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_OR_MEMBER)
  assignee = None
  if payload.assignedTo:
    assignee = await _assignee_id(db, project_id=m.project_id, raw=payload.assignedTo)

  t = Task(
    project_id=m.project_id,
    title=payload.title,
    description=payload.description,
    assigned_to=assignee,
    assigned_by=user.id if assignee else None,
    status=payload.status,
  )
  db.add(t)
  await db.commit()
  return await task_out(db, t)


@router.get("/{project_id}", response_model=list[TaskOut])
async def list_tasks(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[TaskOut]:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_OR_MEMBER)
  res = await db.execute(select(Task).where(Task.project_id == m.project_id).order_by(Task.created_at.asc()))
  return await tasks_out(db, list(res.scalars().all()))


@router.get("/{project_id}/{task_id}", response_model=TaskOut)
async def get_task(
  project_id: str,
  task_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_OR_MEMBER)
  t = await get_task_in_project(db, project_id=m.project_id, task_id=task_id)
  return await task_out(db, t)


@router.put("/{project_id}/{task_id}", response_model=TaskOut)
async def update_task(
  project_id: str,
  task_id: str,
  payload: TaskUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_OR_MEMBER)
  t = await get_task_in_project(db, project_id=m.project_id, task_id=task_id)
  if payload.title is not None:
    t.title = payload.title
  if payload.description is not None:
    t.description = payload.description
  await db.commit()
  return await task_out(db, t)


@router.delete("/{project_id}/{task_id}", response_model=DeletedOut)
async def delete_task(
  project_id: str,
  task_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  storage: BlobStorage = Depends(get_blob_storage),
) -> DeletedOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_OR_MEMBER)
  t = await get_task_in_project(db, project_id=m.project_id, task_id=task_id)
  await cascade.delete_task(db, task=t, storage=storage)
  return DeletedOut(id=t.id)


@router.patch("/{project_id}/{task_id}/status", response_model=TaskOut)
async def update_task_status(
  project_id: str,
  task_id: str,
  payload: TaskStatusIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_OR_MEMBER)
  t = await get_task_in_project(db, project_id=m.project_id, task_id=task_id)
  t.status = payload.status
  await db.commit()
  return await task_out(db, t)


@router.patch("/{project_id}/{task_id}/assign", response_model=TaskOut)
async def assign_task(
  project_id: str,
  task_id: str,
  payload: TaskAssignIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_ONLY)
  t = await get_task_in_project(db, project_id=m.project_id, task_id=task_id)
  t.assigned_to = await _assignee_id(db, project_id=m.project_id, raw=payload.assignedTo)
  t.assigned_by = user.id
  await db.commit()
  return await task_out(db, t)


@router.patch("/{project_id}/{task_id}/attachments", response_model=TaskOut)
async def add_attachments(
  project_id: str,
  task_id: str,
  attachments: list[UploadFile] = File(...),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  storage: BlobStorage = Depends(get_blob_storage),
) -> TaskOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_OR_MEMBER)
  t = await get_task_in_project(db, project_id=m.project_id, task_id=task_id)

  limit = int(settings.max_attachments_per_request)
  if not attachments or len(attachments) > limit:
    raise InvalidInput(
      f"Between 1 and {limit} files can be attached at once.",
      errors=[{"field": "attachments", "message": f"expected 1 to {limit} files"}],
    )

  payloads: list[tuple[UploadFile, bytes]] = []
  for f in attachments:
    data = await f.read()
    if len(data) > int(settings.max_attachment_bytes):
      raise PayloadTooLarge(f"{f.filename or 'file'} exceeds the {int(settings.max_attachment_bytes)} byte limit.")
    payloads.append((f, data))

  stored: list[tuple[UploadFile, int, StoredBlob]] = []
  for f, data in payloads:
    mimetype = f.content_type or "application/octet-stream"
    try:
      blob = await storage.put(data=data, filename=f.filename or "file", mimetype=mimetype)
    except BlobStorageError as exc:
      log.warning("attachment upload failed task=%s filename=%r: %s", t.id, f.filename, exc)
      continue
    stored.append((f, len(data), blob))

  if not stored:
    raise UpstreamFailure("No attachments could be uploaded.")

  for f, size, blob in stored:
    db.add(
      TaskAttachment(
        task_id=t.id,
        url=blob.url,
        external_id=blob.external_id,
        filename=f.filename or blob.external_id,
        mimetype=f.content_type or "application/octet-stream",
        size=size,
      )
    )
  await db.commit()
  return await task_out(db, t)


@router.delete("/{project_id}/{task_id}/attachments/{attachment_id}", response_model=TaskOut)
async def delete_attachment(
  project_id: str,
  task_id: str,
  attachment_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  storage: BlobStorage = Depends(get_blob_storage),
) -> TaskOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_OR_MEMBER)
  t = await get_task_in_project(db, project_id=m.project_id, task_id=task_id)
  aid = parse_id(attachment_id, label="attachmentId")
  res = await db.execute(select(TaskAttachment).where(TaskAttachment.id == aid, TaskAttachment.task_id == t.id))
  a = res.scalar_one_or_none()
  if not a:
    raise NotFound("Attachment not found on this task.")

  try:
    await storage.delete(a.external_id)
  except BlobStorageError as exc:
    log.warning("attachment blob delete failed attachment=%s: %s", a.id, exc)
  await db.delete(a)
  await db.commit()
  return await task_out(db, t)
