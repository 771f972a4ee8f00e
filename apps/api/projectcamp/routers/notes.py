from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from projectcamp.deps import authorize, get_current_user, get_db, parse_id
from projectcamp.errors import NotFound
from projectcamp.models import ProjectNote, User
from projectcamp.roles import ADMIN_ONLY, ANY_MEMBER
from projectcamp.schemas import DeletedOut, NoteIn, NoteOut
from projectcamp.serializers import notes_out

router = APIRouter(prefix="/api/v1/notes", tags=["notes"])


async def _get_note(db: AsyncSession, *, project_id: str, note_id: str) -> ProjectNote:
  nid = parse_id(note_id, label="noteId")
  res = await db.execute(select(ProjectNote).where(ProjectNote.id == nid, ProjectNote.project_id == project_id))
  n = res.scalar_one_or_none()
  if not n:
    raise NotFound("Note not found.")
  return n


@router.get("/{project_id}", response_model=list[NoteOut])
async def list_notes(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[NoteOut]:
  m = await authorize(db, principal=user, project_id=project_id, required=ANY_MEMBER)
  res = await db.execute(
    select(ProjectNote).where(ProjectNote.project_id == m.project_id).order_by(ProjectNote.created_at.desc())
  )
  return await notes_out(db, list(res.scalars().all()))


@router.post("/{project_id}", response_model=NoteOut, status_code=status.HTTP_201_CREATED)
async def create_note(
  project_id: str,
  payload: NoteIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> NoteOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_ONLY)
  n = ProjectNote(project_id=m.project_id, content=payload.content, created_by=user.id)
  db.add(n)
  await db.commit()
  return (await notes_out(db, [n]))[0]


@router.get("/{project_id}/n/{note_id}", response_model=NoteOut)
async def get_note(
  project_id: str,
  note_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> NoteOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ANY_MEMBER)
  n = await _get_note(db, project_id=m.project_id, note_id=note_id)
  return (await notes_out(db, [n]))[0]


@router.put("/{project_id}/n/{note_id}", response_model=NoteOut)
async def update_note(
  project_id: str,
  note_id: str,
  payload: NoteIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> NoteOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_ONLY)
  n = await _get_note(db, project_id=m.project_id, note_id=note_id)
  n.content = payload.content
  await db.commit()
  return (await notes_out(db, [n]))[0]


@router.delete("/{project_id}/n/{note_id}", response_model=DeletedOut)
async def delete_note(
  project_id: str,
  note_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> DeletedOut:
  m = await authorize(db, principal=user, project_id=project_id, required=ADMIN_ONLY)
  n = await _get_note(db, project_id=m.project_id, note_id=note_id)
  await db.delete(n)
  await db.commit()
  return DeletedOut(id=n.id)
