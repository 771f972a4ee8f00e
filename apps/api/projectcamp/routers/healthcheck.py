from __future__ import annotations

import os

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from projectcamp.config import settings
from projectcamp.errors import InvalidIdentifier, NotFound
from projectcamp.metrics import runtime_metrics
from projectcamp.storage import BlobStorage, BlobStorageError, LocalBlobStorage, get_blob_storage

router = APIRouter(tags=["system"])


@router.get("/api/v1/healthcheck")
async def healthcheck() -> dict:
  return {"message": "server is running", "version": settings.app_version, "metrics": runtime_metrics.snapshot()}


@router.get(settings.upload_base_url.rstrip("/") + "/{external_id}")
async def uploaded_file(external_id: str, storage: BlobStorage = Depends(get_blob_storage)) -> FileResponse:
  if not isinstance(storage, LocalBlobStorage):
    raise NotFound("Not found")
  try:
    path = storage.path_for(external_id)
  except BlobStorageError as exc:
    raise InvalidIdentifier("Invalid file name.") from exc
  if not os.path.isfile(path):
    raise NotFound("Not found")
  return FileResponse(path)
