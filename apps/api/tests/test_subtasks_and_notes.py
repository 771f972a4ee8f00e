from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from projectcamp.db import SessionLocal
from projectcamp.mailer import LocalMailer
from projectcamp.models import SubTask

from conftest import add_member, create_project, create_task, signup_and_login


@pytest.mark.anyio
async def test_subtask_lifecycle(client: AsyncClient, mailer: LocalMailer) -> None:
  _, ha = await signup_and_login(client, mailer, "alice")
  b, hb = await signup_and_login(client, mailer, "bob")
  p = await create_project(client, ha, "Alpha")
  await add_member(client, ha, p["id"], b["email"])
  t = await create_task(client, ha, p["id"])
  base = f"/api/v1/subtasks/{p['id']}/{t['id']}"

  r = await client.post(base, json={"title": "  outline  "}, headers=hb)
  assert r.status_code == 201, r.text
  s = r.json()
  assert s["title"] == "outline" and s["isCompleted"] is False and s["createdBy"] == b["id"]

  r = await client.patch(f"{base}/{s['id']}/toggle-status", headers=hb)
  assert r.status_code == 200 and r.json()["isCompleted"] is True
  r = await client.patch(f"{base}/{s['id']}/toggle-status", headers=hb)
  assert r.json()["isCompleted"] is False

  r = await client.put(f"{base}/{s['id']}", json={"title": "outline v2", "isCompleted": True}, headers=ha)
  assert r.status_code == 200, r.text
  assert r.json()["title"] == "outline v2" and r.json()["isCompleted"] is True

  listed = (await client.get(base, headers=hb)).json()
  assert [x["id"] for x in listed] == [s["id"]]

  r = await client.delete(f"{base}/{s['id']}", headers=hb)
  assert r.status_code == 200
  assert (await client.get(base, headers=hb)).json() == []


@pytest.mark.anyio
async def test_subtask_rejects_task_from_another_project(client: AsyncClient, mailer: LocalMailer) -> None:
  _, ha = await signup_and_login(client, mailer, "alice")
  p1 = await create_project(client, ha, "Alpha")
  p2 = await create_project(client, ha, "Beta")
  t2 = await create_task(client, ha, p2["id"])
  s = (await client.post(f"/api/v1/subtasks/{p2['id']}/{t2['id']}", json={"title": "x"}, headers=ha)).json()

  wrong = f"/api/v1/subtasks/{p1['id']}/{t2['id']}"
  assert (await client.post(wrong, json={"title": "leak"}, headers=ha)).status_code == 404
  assert (await client.get(wrong, headers=ha)).status_code == 404
  assert (await client.put(f"{wrong}/{s['id']}", json={"title": "leak"}, headers=ha)).status_code == 404
  assert (await client.patch(f"{wrong}/{s['id']}/toggle-status", headers=ha)).status_code == 404
  assert (await client.delete(f"{wrong}/{s['id']}", headers=ha)).status_code == 404

  # subtask id paired with a different task of the right project
  t1 = await create_task(client, ha, p1["id"])
  r = await client.put(f"/api/v1/subtasks/{p1['id']}/{t1['id']}/{s['id']}", json={"title": "leak"}, headers=ha)
  assert r.status_code == 404

  async with SessionLocal() as db:
    rows = (await db.execute(select(SubTask).where(SubTask.task_id == t2["id"]))).scalars().all()
  assert [(x.title, x.is_completed) for x in rows] == [("x", False)]


@pytest.mark.anyio
async def test_non_member_cannot_touch_subtasks(client: AsyncClient, mailer: LocalMailer) -> None:
  _, ha = await signup_and_login(client, mailer, "alice")
  _, hc = await signup_and_login(client, mailer, "carol")
  p = await create_project(client, ha, "Alpha")
  t = await create_task(client, ha, p["id"])
  r = await client.post(f"/api/v1/subtasks/{p['id']}/{t['id']}", json={"title": "x"}, headers=hc)
  assert r.status_code == 404


@pytest.mark.anyio
async def test_notes_are_admin_written_and_member_readable(client: AsyncClient, mailer: LocalMailer) -> None:
  a, ha = await signup_and_login(client, mailer, "alice")
  b, hb = await signup_and_login(client, mailer, "bob")
  p = await create_project(client, ha, "Alpha")
  await add_member(client, ha, p["id"], b["email"])

  r = await client.post(f"/api/v1/notes/{p['id']}", json={"content": "kickoff friday"}, headers=hb)
  assert r.status_code == 403
  r = await client.post(f"/api/v1/notes/{p['id']}", json={"content": "kickoff friday"}, headers=ha)
  assert r.status_code == 201, r.text
  note = r.json()
  assert note["createdBy"]["id"] == a["id"]

  assert [n["id"] for n in (await client.get(f"/api/v1/notes/{p['id']}", headers=hb)).json()] == [note["id"]]
  r = await client.get(f"/api/v1/notes/{p['id']}/n/{note['id']}", headers=hb)
  assert r.status_code == 200 and r.json()["content"] == "kickoff friday"

  assert (await client.put(f"/api/v1/notes/{p['id']}/n/{note['id']}", json={"content": "x"}, headers=hb)).status_code == 403
  r = await client.put(f"/api/v1/notes/{p['id']}/n/{note['id']}", json={"content": "kickoff monday"}, headers=ha)
  assert r.status_code == 200 and r.json()["content"] == "kickoff monday"

  assert (await client.delete(f"/api/v1/notes/{p['id']}/n/{note['id']}", headers=hb)).status_code == 403
  assert (await client.delete(f"/api/v1/notes/{p['id']}/n/{note['id']}", headers=ha)).status_code == 200
  assert (await client.get(f"/api/v1/notes/{p['id']}/n/{note['id']}", headers=ha)).status_code == 404


@pytest.mark.anyio
async def test_note_ids_are_bound_to_their_project(client: AsyncClient, mailer: LocalMailer) -> None:
  _, ha = await signup_and_login(client, mailer, "alice")
  p1 = await create_project(client, ha, "Alpha")
  p2 = await create_project(client, ha, "Beta")
  note = (await client.post(f"/api/v1/notes/{p2['id']}", json={"content": "secret"}, headers=ha)).json()

  assert (await client.get(f"/api/v1/notes/{p1['id']}/n/{note['id']}", headers=ha)).status_code == 404
  assert (await client.delete(f"/api/v1/notes/{p1['id']}/n/{note['id']}", headers=ha)).status_code == 404
  assert (await client.get(f"/api/v1/notes/{p2['id']}/n/{note['id']}", headers=ha)).status_code == 200
