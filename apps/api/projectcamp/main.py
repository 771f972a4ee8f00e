from __future__ import annotations

import logging
from time import monotonic

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from projectcamp.config import settings
from projectcamp.errors import ApiError, InvalidInput, field_errors
from projectcamp.metrics import runtime_metrics
from projectcamp.routers.auth import router as auth_router
from projectcamp.routers.healthcheck import router as healthcheck_router
from projectcamp.routers.notes import router as notes_router
from projectcamp.routers.projects import router as projects_router
from projectcamp.routers.subtasks import router as subtasks_router
from projectcamp.routers.tasks import router as tasks_router

logging.basicConfig(
  level=getattr(logging, settings.log_level.upper(), logging.INFO),
  format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
log = logging.getLogger("projectcamp")

PLACEHOLDER_SECRETS = {"", "dev-access-secret-change-me", "dev-refresh-secret-change-me", "replace_with_strong_random_secret"}

app = FastAPI(
  title="Project Camp API",
  version=settings.app_version,
  docs_url="/docs" if settings.api_docs_enabled else None,
  redoc_url="/redoc" if settings.api_docs_enabled else None,
  openapi_url="/openapi.json" if settings.api_docs_enabled else None,
)


@app.exception_handler(ApiError)
async def _api_error_handler(_: Request, exc: ApiError) -> JSONResponse:
  return JSONResponse(status_code=exc.status_code, content={"detail": exc.payload()}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
  err = InvalidInput("Received data is not valid.", errors=field_errors(list(exc.errors())))
  return JSONResponse(status_code=err.status_code, content={"detail": err.payload()})


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_origin_regex=settings.cors_origin_regex,
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

app.include_router(healthcheck_router)
app.include_router(auth_router)
app.include_router(projects_router)
app.include_router(tasks_router)
app.include_router(subtasks_router)
app.include_router(notes_router)


@app.middleware("http")
async def _request_metrics_middleware(request, call_next):
  start = monotonic()
  response = await call_next(request)
  elapsed_ms = (monotonic() - start) * 1000.0
  runtime_metrics.observe_request(response.status_code, elapsed_ms)
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  response.headers.setdefault("X-Frame-Options", "DENY")
  response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
  response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
  return response


@app.on_event("startup")
async def _startup() -> None:
  if settings.is_test_db():
    return
  for name in ("access_token_secret", "refresh_token_secret"):
    value = (getattr(settings, name) or "").strip().lower()
    if value in PLACEHOLDER_SECRETS:
      raise RuntimeError(f"{name.upper()} is required and must not be a placeholder")
  log.info("project camp api starting version=%s", settings.app_version)
