from __future__ import annotations

import os
import re
import sys
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{ROOT / 'projectcamp_test.db'}")

from projectcamp.config import settings
from projectcamp.db import SessionLocal, engine
from projectcamp.mailer import LocalMailer, get_mailer
from projectcamp.main import app
from projectcamp.models import Base
from projectcamp.rate_limit import limiter
from projectcamp.storage import LocalBlobStorage, get_blob_storage

PASSWORD = "secret123"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  limiter.reset_prefix("auth:")
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
  async with SessionLocal() as db:
    for table in reversed(Base.metadata.sorted_tables):
      await db.execute(delete(table))
    await db.commit()
  await engine.dispose()


@pytest.fixture(autouse=True)
async def _clean_between_tests(anyio_backend) -> None:
  if not settings.is_test_db():
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. projectcamp_test)."
    )
  await _reset_db()
  yield
  await _reset_db()


@pytest.fixture
def mailer() -> LocalMailer:
  m = LocalMailer()
  app.dependency_overrides[get_mailer] = lambda: m
  yield m
  app.dependency_overrides.pop(get_mailer, None)


@pytest.fixture
def storage(tmp_path: Path) -> LocalBlobStorage:
  s = LocalBlobStorage(str(tmp_path / "uploads"), settings.upload_base_url)
  app.dependency_overrides[get_blob_storage] = lambda: s
  yield s
  app.dependency_overrides.pop(get_blob_storage, None)


@pytest.fixture
async def client(mailer: LocalMailer, storage: LocalBlobStorage) -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


def last_link_token(mailer: LocalMailer, kind: str) -> str:
  """Pull the token out of the newest mailed ``verify``/``reset-password`` link."""
  for msg in reversed(mailer.outbox):
    m = re.search(rf"/{kind}/([A-Za-z0-9_\-]+)", msg.text)
    if m:
      return m.group(1)
  raise AssertionError(f"no {kind} link in outbox")


async def register(client: AsyncClient, username: str, *, email: str | None = None, password: str = PASSWORD) -> dict:
  res = await client.post(
    "/api/v1/users/register",
    json={"email": email or f"{username}@example.com", "username": username, "password": password},
  )
  assert res.status_code == 201, res.text
  return res.json()


async def signup(client: AsyncClient, mailer: LocalMailer, username: str, *, password: str = PASSWORD) -> dict:
  """Register and verify a user through the mailed link."""
  user = await register(client, username, password=password)
  res = await client.get(f"/api/v1/users/verify/{last_link_token(mailer, 'verify')}")
  assert res.status_code == 200, res.text
  return user


async def login(client: AsyncClient, email: str, password: str = PASSWORD) -> dict[str, str]:
  """Log in and return bearer headers.

  Cookies are dropped so several users can act through one client.
  """
  res = await client.post("/api/v1/users/login", json={"email": email, "password": password})
  assert res.status_code == 200, res.text
  client.cookies.clear()
  return {"Authorization": f"Bearer {res.json()['accessToken']}"}


async def signup_and_login(client: AsyncClient, mailer: LocalMailer, username: str) -> tuple[dict, dict[str, str]]:
  user = await signup(client, mailer, username)
  return user, await login(client, user["email"])


async def create_project(client: AsyncClient, headers: dict[str, str], name: str, description: str = "") -> dict:
  res = await client.post("/api/v1/projects", json={"name": name, "description": description}, headers=headers)
  assert res.status_code == 201, res.text
  return res.json()


async def add_member(client: AsyncClient, headers: dict[str, str], project_id: str, email: str, role: str = "member") -> dict:
  res = await client.post(f"/api/v1/projects/{project_id}/members", json={"email": email, "role": role}, headers=headers)
  assert res.status_code == 201, res.text
  return res.json()


async def create_task(client: AsyncClient, headers: dict[str, str], project_id: str, **fields) -> dict:
  body = {"title": "Write docs", **fields}
  res = await client.post(f"/api/v1/tasks/{project_id}", json=body, headers=headers)
  assert res.status_code == 201, res.text
  return res.json()
