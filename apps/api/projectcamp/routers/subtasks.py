from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from projectcamp.deps import authorize, get_current_user, get_db, get_subtask_in_task, get_task_in_project
from projectcamp.models import SubTask, Task, User
from projectcamp.roles import ADMIN_OR_MEMBER
from projectcamp.schemas import DeletedOut, SubTaskCreateIn, SubTaskOut, SubTaskUpdateIn
from projectcamp.serializers import subtask_out

router = APIRouter(prefix="/api/v1/subtasks", tags=["subtasks"])


async def _task(db: AsyncSession, user: User, project_id: str, task_id: str) -> Task:
  # Every subtask route re-binds the task to the project in the path.
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_OR_MEMBER)
  return await get_task_in_project(db, project_id=m.project_id, task_id=task_id)


@router.post("/{project_id}/{task_id}", response_model=SubTaskOut, status_code=status.HTTP_201_CREATED)
async def create_subtask(
  project_id: str,
  task_id: str,
  payload: SubTaskCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> SubTaskOut:
  t = await _task(db, user, project_id, task_id)
  s = SubTask(task_id=t.id, title=payload.title, created_by=user.id)
  db.add(s)
  await db.commit()
  return subtask_out(s)


@router.get("/{project_id}/{task_id}", response_model=list[SubTaskOut])
async def list_subtasks(
  project_id: str,
  task_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[SubTaskOut]:
  t = await _task(db, user, project_id, task_id)
  res = await db.execute(select(SubTask).where(SubTask.task_id == t.id).order_by(SubTask.created_at.asc()))
  return [subtask_out(s) for s in res.scalars().all()]


@router.put("/{project_id}/{task_id}/{subtask_id}", response_model=SubTaskOut)
async def update_subtask(
  project_id: str,
  task_id: str,
  subtask_id: str,
  payload: SubTaskUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> SubTaskOut:
  t = await _task(db, user, project_id, task_id)
  s = await get_subtask_in_task(db, task_id=t.id, subtask_id=subtask_id)
  if payload.title is not None:
    s.title = payload.title
  if payload.isCompleted is not None:
    s.is_completed = payload.isCompleted
  await db.commit()
  return subtask_out(s)


@router.delete("/{project_id}/{task_id}/{subtask_id}", response_model=DeletedOut)
async def delete_subtask(
  project_id: str,
  task_id: str,
  subtask_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> DeletedOut:
  t = await _task(db, user, project_id, task_id)
  s = await get_subtask_in_task(db, task_id=t.id, subtask_id=subtask_id)
  await db.delete(s)
  await db.commit()
  return DeletedOut(id=s.id)


@router.patch("/{project_id}/{task_id}/{subtask_id}/toggle-status", response_model=SubTaskOut)
async def toggle_subtask(
  project_id: str,
  task_id: str,
  subtask_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> SubTaskOut:
  t = await _task(db, user, project_id, task_id)
  s = await get_subtask_in_task(db, task_id=t.id, subtask_id=subtask_id)
  s.is_completed = not s.is_completed
  await db.commit()
  return subtask_out(s)
