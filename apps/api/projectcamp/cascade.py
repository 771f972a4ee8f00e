"""Multi-record deletions that keep projects, members and tasks consistent.

Each cascade stages its deletes children-first in one transaction and commits
once at the end. Any failure rolls every staged statement back and re-raises the
underlying error, so callers never observe a partially applied cascade.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from projectcamp.errors import NotFound
from projectcamp.membership import delete_guarded, ensure_not_last_admin, get_in_project, lock_project
from projectcamp.models import Project, ProjectMember, ProjectNote, SubTask, Task, TaskAttachment
from projectcamp.storage import BlobStorage, delete_blobs_best_effort

log = logging.getLogger("projectcamp.cascade")


async def delete_project(db: AsyncSession, *, project_id: str, storage: BlobStorage) -> None:
  try:
    tres = await db.execute(select(Task.id).where(Task.project_id == project_id))
    task_ids = list(tres.scalars().all())

    blob_ids: list[str] = []
    if task_ids:
      ares = await db.execute(select(TaskAttachment.external_id).where(TaskAttachment.task_id.in_(task_ids)))
      blob_ids = list(ares.scalars().all())
      await db.execute(delete(SubTask).where(SubTask.task_id.in_(task_ids)))
      await db.execute(delete(TaskAttachment).where(TaskAttachment.task_id.in_(task_ids)))
    await db.execute(delete(Task).where(Task.project_id == project_id))
    await db.execute(delete(ProjectNote).where(ProjectNote.project_id == project_id))
    await db.execute(delete(ProjectMember).where(ProjectMember.project_id == project_id))

    res = await db.execute(delete(Project).where(Project.id == project_id))
    if res.rowcount != 1:
      raise NotFound("Project not found")
    await db.commit()
  except Exception:
    await db.rollback()
    log.warning("project delete rolled back project=%s", project_id)
    raise

  log.info("project deleted project=%s tasks=%d", project_id, len(task_ids))
  # Blobs live outside the transaction; orphans are acceptable, blocking is not.
  await delete_blobs_best_effort(storage, blob_ids)


async def remove_member(db: AsyncSession, *, project_id: str, membership_id: str) -> ProjectMember:
  """Remove a membership and unassign its user from the project's tasks.

  Unassignment and the membership delete commit together or not at all.
  """
  try:
    await lock_project(db, project_id)
    m = await get_in_project(db, project_id=project_id, membership_id=membership_id, for_update=True)
    user_id = m.user_id
    await ensure_not_last_admin(db, m)

    await db.execute(
      update(Task)
      .where(Task.project_id == project_id, Task.assigned_to == user_id)
      .values(assigned_to=None)
      .execution_options(synchronize_session=False)
    )
    await delete_guarded(db, project_id=project_id, membership_id=membership_id)
    await db.commit()
  except Exception:
    await db.rollback()
    raise

  log.info("member removed project=%s user=%s", project_id, user_id)
  return m


async def delete_task(db: AsyncSession, *, task: Task, storage: BlobStorage) -> None:
  ares = await db.execute(select(TaskAttachment.external_id).where(TaskAttachment.task_id == task.id))
  await delete_blobs_best_effort(storage, list(ares.scalars().all()))

  try:
    await db.execute(delete(SubTask).where(SubTask.task_id == task.id))
    await db.execute(delete(TaskAttachment).where(TaskAttachment.task_id == task.id))
    await db.execute(delete(Task).where(Task.id == task.id))
    await db.commit()
  except Exception:
    await db.rollback()
    raise
