from __future__ import annotations

import asyncio
import logging
import os
import re
import uuid
from dataclasses import dataclass
from typing import Protocol

from projectcamp.config import settings

log = logging.getLogger("projectcamp.storage")

_EXTERNAL_ID_RE = re.compile(r"^[0-9a-f]{32}(\.[A-Za-z0-9]{1,16})?$")


class BlobStorageError(RuntimeError):
  pass


@dataclass(frozen=True)
class StoredBlob:
  url: str
  external_id: str


class BlobStorage(Protocol):
  async def put(self, *, data: bytes, filename: str, mimetype: str) -> StoredBlob: ...

  async def delete(self, external_id: str) -> None: ...


class LocalBlobStorage:
  """Writes blobs under a directory; served back by the ``/uploads`` route."""

  def __init__(self, root: str, base_url: str) -> None:
    self.root = root
    self.base_url = base_url.rstrip("/")

  def path_for(self, external_id: str) -> str:
    if not _EXTERNAL_ID_RE.fullmatch(external_id or ""):
      raise BlobStorageError("Invalid blob id")
    return os.path.join(self.root, external_id)

  async def put(self, *, data: bytes, filename: str, mimetype: str) -> StoredBlob:
    ext = os.path.splitext(filename or "")[1]
    if ext and not re.fullmatch(r"\.[A-Za-z0-9]{1,16}", ext):
      ext = ""
    external_id = f"{uuid.uuid4().hex}{ext}"
    path = self.path_for(external_id)

    def _write() -> None:
      os.makedirs(self.root, exist_ok=True)
      with open(path, "wb") as f:
        f.write(data)

    try:
      await asyncio.to_thread(_write)
    except OSError as exc:
      raise BlobStorageError(f"Could not store {filename!r}") from exc
    return StoredBlob(url=f"{self.base_url}/{external_id}", external_id=external_id)

  async def delete(self, external_id: str) -> None:
    path = self.path_for(external_id)

    def _remove() -> None:
      if os.path.exists(path):
        os.remove(path)

    try:
      await asyncio.to_thread(_remove)
    except OSError as exc:
      raise BlobStorageError(f"Could not delete blob {external_id}") from exc


async def delete_blobs_best_effort(storage: BlobStorage, external_ids: list[str]) -> int:
  """Delete every blob it can; failures are logged and never raised."""
  failed = 0
  for external_id in external_ids:
    try:
      await storage.delete(external_id)
    except BlobStorageError as exc:
      failed += 1
      log.warning("blob delete failed external_id=%s: %s", external_id, exc)
  return failed


blob_storage: BlobStorage = LocalBlobStorage(settings.upload_dir, settings.upload_base_url)


def get_blob_storage() -> BlobStorage:
  return blob_storage
