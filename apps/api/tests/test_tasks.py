from __future__ import annotations

import os

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from projectcamp import cascade, membership
from projectcamp.config import settings
from projectcamp.db import SessionLocal
from projectcamp.errors import NotFound
from projectcamp.mailer import LocalMailer
from projectcamp.models import ProjectMember, ProjectNote, SubTask, Task, TaskAttachment
from projectcamp.storage import BlobStorageError, LocalBlobStorage

from conftest import add_member, create_project, create_task, signup_and_login


async def _count(model, *where) -> int:
  async with SessionLocal() as db:
    return int((await db.execute(select(func.count()).select_from(model).where(*where))).scalar_one())


@pytest.mark.anyio
async def test_task_crud_and_assignment(client: AsyncClient, mailer: LocalMailer) -> None:
  a, ha = await signup_and_login(client, mailer, "alice")
  b, hb = await signup_and_login(client, mailer, "bob")
  p = await create_project(client, ha, "Alpha")
  await add_member(client, ha, p["id"], b["email"])

  t = await create_task(client, hb, p["id"], title="Draft", description="first pass")
  assert t["status"] == "todo"
  assert t["assignedTo"] is None

  r = await client.put(f"/api/v1/tasks/{p['id']}/{t['id']}", json={"title": "Final"}, headers=hb)
  assert r.status_code == 200, r.text
  assert r.json()["title"] == "Final" and r.json()["description"] == "first pass"

  r = await client.patch(f"/api/v1/tasks/{p['id']}/{t['id']}/status", json={"status": "done"}, headers=hb)
  assert r.status_code == 200 and r.json()["status"] == "done"
  r = await client.patch(f"/api/v1/tasks/{p['id']}/{t['id']}/status", json={"status": "blocked"}, headers=hb)
  assert r.status_code == 400

  # assign is admin-only
  r = await client.patch(f"/api/v1/tasks/{p['id']}/{t['id']}/assign", json={"assignedTo": b["id"]}, headers=hb)
  assert r.status_code == 403
  r = await client.patch(f"/api/v1/tasks/{p['id']}/{t['id']}/assign", json={"assignedTo": b["id"]}, headers=ha)
  assert r.status_code == 200, r.text
  assert r.json()["assignedTo"]["id"] == b["id"]
  assert r.json()["assignedBy"]["id"] == a["id"]

  listed = (await client.get(f"/api/v1/tasks/{p['id']}", headers=hb)).json()
  assert [x["id"] for x in listed] == [t["id"]]


@pytest.mark.anyio
async def test_assigning_a_non_member_is_rejected_without_side_effects(client: AsyncClient, mailer: LocalMailer) -> None:
  _, ha = await signup_and_login(client, mailer, "alice")
  d, _ = await signup_and_login(client, mailer, "dave")
  p = await create_project(client, ha, "Alpha")

  r = await client.post(f"/api/v1/tasks/{p['id']}", json={"title": "Nope", "assignedTo": d["id"]}, headers=ha)
  assert r.status_code == 400, r.text
  assert r.json()["detail"]["errors"][0]["field"] == "assignedTo"
  assert await _count(Task, Task.project_id == p["id"]) == 0

  r = await client.post(f"/api/v1/tasks/{p['id']}", json={"title": "Nope", "assignedTo": "bogus"}, headers=ha)
  assert r.status_code == 400
  assert r.json()["detail"]["code"] == "invalid_identifier"


@pytest.mark.anyio
async def test_assignee_check_runs_under_the_project_lock(client: AsyncClient, mailer: LocalMailer, monkeypatch) -> None:
  _, ha = await signup_and_login(client, mailer, "alice")
  b, _ = await signup_and_login(client, mailer, "bob")
  p = await create_project(client, ha, "Alpha")
  await add_member(client, ha, p["id"], b["email"])

  calls: list[tuple[str, str]] = []
  lock_project, is_member = membership.lock_project, membership.is_member

  async def _lock(db, project_id):
    calls.append(("lock", project_id))
    return await lock_project(db, project_id)

  async def _check(db, *, project_id, user_id):
    calls.append(("check", project_id))
    return await is_member(db, project_id=project_id, user_id=user_id)

  monkeypatch.setattr(membership, "lock_project", _lock)
  monkeypatch.setattr(membership, "is_member", _check)

  t = await create_task(client, ha, p["id"], assignedTo=b["id"])
  assert calls == [("lock", p["id"]), ("check", p["id"])]

  calls.clear()
  r = await client.patch(f"/api/v1/tasks/{p['id']}/{t['id']}/assign", json={"assignedTo": b["id"]}, headers=ha)
  assert r.status_code == 200, r.text
  assert calls == [("lock", p["id"]), ("check", p["id"])]


@pytest.mark.anyio
async def test_task_ids_are_bound_to_their_project(client: AsyncClient, mailer: LocalMailer) -> None:
  _, ha = await signup_and_login(client, mailer, "alice")
  p1 = await create_project(client, ha, "Alpha")
  p2 = await create_project(client, ha, "Beta")
  t = await create_task(client, ha, p2["id"])

  r = await client.get(f"/api/v1/tasks/{p1['id']}/{t['id']}", headers=ha)
  assert r.status_code == 404
  r = await client.delete(f"/api/v1/tasks/{p1['id']}/{t['id']}", headers=ha)
  assert r.status_code == 404
  assert await _count(Task, Task.id == t["id"]) == 1


@pytest.mark.anyio
async def test_deleting_task_removes_subtasks_and_blobs(client: AsyncClient, mailer: LocalMailer, storage: LocalBlobStorage) -> None:
  _, ha = await signup_and_login(client, mailer, "alice")
  p = await create_project(client, ha, "Alpha")
  t = await create_task(client, ha, p["id"])
  for title in ("a", "b"):
    r = await client.post(f"/api/v1/subtasks/{p['id']}/{t['id']}", json={"title": title}, headers=ha)
    assert r.status_code == 201, r.text
  r = await client.patch(
    f"/api/v1/tasks/{p['id']}/{t['id']}/attachments",
    files=[("attachments", ("notes.txt", b"hello", "text/plain"))],
    headers=ha,
  )
  assert r.status_code == 200, r.text
  blob_path = storage.path_for(r.json()["attachments"][0]["externalId"])
  assert os.path.isfile(blob_path)

  r = await client.delete(f"/api/v1/tasks/{p['id']}/{t['id']}", headers=ha)
  assert r.status_code == 200, r.text
  assert await _count(SubTask, SubTask.task_id == t["id"]) == 0
  assert await _count(TaskAttachment, TaskAttachment.task_id == t["id"]) == 0
  assert not os.path.exists(blob_path)


@pytest.mark.anyio
async def test_project_delete_cascades_everything(client: AsyncClient, mailer: LocalMailer, storage: LocalBlobStorage) -> None:
  _, ha = await signup_and_login(client, mailer, "alice")
  b, hb = await signup_and_login(client, mailer, "bob")
  p = await create_project(client, ha, "Alpha")
  keep = await create_project(client, ha, "Keep")
  await add_member(client, ha, p["id"], b["email"])
  kept_task = await create_task(client, ha, keep["id"])

  task_ids = []
  for i in range(2):
    t = await create_task(client, ha, p["id"], title=f"t{i}", assignedTo=b["id"])
    task_ids.append(t["id"])
    await client.post(f"/api/v1/subtasks/{p['id']}/{t['id']}", json={"title": "step"}, headers=ha)
  r = await client.patch(
    f"/api/v1/tasks/{p['id']}/{task_ids[0]}/attachments",
    files=[("attachments", ("a.txt", b"a", "text/plain")), ("attachments", ("b.txt", b"b", "text/plain"))],
    headers=ha,
  )
  assert r.status_code == 200, r.text
  blob_paths = [storage.path_for(x["externalId"]) for x in r.json()["attachments"]]
  await client.post(f"/api/v1/notes/{p['id']}", json={"content": "remember"}, headers=ha)

  r = await client.delete(f"/api/v1/projects/{p['id']}", headers=ha)
  assert r.status_code == 200, r.text

  assert await _count(Task, Task.project_id == p["id"]) == 0
  assert await _count(SubTask, SubTask.task_id.in_(task_ids)) == 0
  assert await _count(TaskAttachment, TaskAttachment.task_id.in_(task_ids)) == 0
  assert await _count(ProjectNote, ProjectNote.project_id == p["id"]) == 0
  assert await _count(ProjectMember, ProjectMember.project_id == p["id"]) == 0
  assert not any(os.path.exists(x) for x in blob_paths)
  assert (await client.get(f"/api/v1/projects/{p['id']}", headers=hb)).status_code == 404

  # unrelated project untouched
  assert await _count(Task, Task.id == kept_task["id"]) == 1

  async with SessionLocal() as db:
    with pytest.raises(NotFound):
      await cascade.delete_project(db, project_id=p["id"], storage=storage)


@pytest.mark.anyio
async def test_attachment_limits(client: AsyncClient, mailer: LocalMailer) -> None:
  _, ha = await signup_and_login(client, mailer, "alice")
  p = await create_project(client, ha, "Alpha")
  t = await create_task(client, ha, p["id"])
  url = f"/api/v1/tasks/{p['id']}/{t['id']}/attachments"

  too_many = [("attachments", (f"f{i}.txt", b"x", "text/plain")) for i in range(settings.max_attachments_per_request + 1)]
  r = await client.patch(url, files=too_many, headers=ha)
  assert r.status_code == 400, r.text

  orig = settings.max_attachment_bytes
  settings.max_attachment_bytes = 10
  try:
    r = await client.patch(url, files=[("attachments", ("big.txt", b"a" * 11, "text/plain"))], headers=ha)
    assert r.status_code == 413, r.text
  finally:
    settings.max_attachment_bytes = orig
  assert await _count(TaskAttachment, TaskAttachment.task_id == t["id"]) == 0


@pytest.mark.anyio
async def test_upload_failures_are_skipped_until_none_succeed(
  client: AsyncClient, mailer: LocalMailer, storage: LocalBlobStorage, monkeypatch
) -> None:
  _, ha = await signup_and_login(client, mailer, "alice")
  p = await create_project(client, ha, "Alpha")
  t = await create_task(client, ha, p["id"])
  url = f"/api/v1/tasks/{p['id']}/{t['id']}/attachments"

  real_put = storage.put

  async def _flaky_put(*, data: bytes, filename: str, mimetype: str):
    if filename.startswith("bad"):
      raise BlobStorageError("upstream down")
    return await real_put(data=data, filename=filename, mimetype=mimetype)

  monkeypatch.setattr(storage, "put", _flaky_put)
  r = await client.patch(
    url,
    files=[("attachments", ("bad.txt", b"1", "text/plain")), ("attachments", ("good.txt", b"2", "text/plain"))],
    headers=ha,
  )
  assert r.status_code == 200, r.text
  assert [a["filename"] for a in r.json()["attachments"]] == ["good.txt"]

  r = await client.patch(url, files=[("attachments", ("bad.txt", b"1", "text/plain"))], headers=ha)
  assert r.status_code == 502
  assert r.json()["detail"]["code"] == "upstream_failure"


@pytest.mark.anyio
async def test_delete_attachment_and_serve_upload(client: AsyncClient, mailer: LocalMailer, storage: LocalBlobStorage) -> None:
  _, ha = await signup_and_login(client, mailer, "alice")
  p = await create_project(client, ha, "Alpha")
  t = await create_task(client, ha, p["id"])
  r = await client.patch(
    f"/api/v1/tasks/{p['id']}/{t['id']}/attachments",
    files=[("attachments", ("readme.md", b"# hi", "text/markdown"))],
    headers=ha,
  )
  att = r.json()["attachments"][0]
  assert att["url"] == f"/uploads/{att['externalId']}"

  served = await client.get(att["url"])
  assert served.status_code == 200
  assert served.content == b"# hi"

  r = await client.delete(f"/api/v1/tasks/{p['id']}/{t['id']}/attachments/{att['id']}", headers=ha)
  assert r.status_code == 200, r.text
  assert r.json()["attachments"] == []
  assert (await client.get(att["url"])).status_code == 404

  r = await client.delete(f"/api/v1/tasks/{p['id']}/{t['id']}/attachments/{att['id']}", headers=ha)
  assert r.status_code == 404
