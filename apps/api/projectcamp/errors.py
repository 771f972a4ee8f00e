from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class ApiError(HTTPException):
  """Base for every failure surfaced to API callers.

  ``code`` is stable across releases and is what clients should branch on;
  ``message`` is for humans. ``errors`` carries field-level detail for input
  problems.
  """

  status_code_default = status.HTTP_400_BAD_REQUEST
  code = "error"

  def __init__(
    self,
    message: str,
    *,
    errors: list[dict[str, Any]] | None = None,
    headers: dict[str, str] | None = None,
  ) -> None:
    super().__init__(status_code=self.status_code_default, detail=message, headers=headers)
    self.message = message
    self.errors = errors or []

  def payload(self) -> dict[str, Any]:
    return {"code": self.code, "message": self.message, "statusCode": self.status_code, "errors": self.errors}


class InvalidInput(ApiError):
  code = "invalid_input"


class InvalidIdentifier(InvalidInput):
  code = "invalid_identifier"


class PreconditionFailed(ApiError):
  code = "precondition_failed"


class InvariantViolation(ApiError):
  code = "invariant_violation"


class NotAuthenticated(ApiError):
  status_code_default = status.HTTP_401_UNAUTHORIZED
  code = "not_authenticated"


class Forbidden(ApiError):
  status_code_default = status.HTTP_403_FORBIDDEN
  code = "forbidden"


class NotFound(ApiError):
  status_code_default = status.HTTP_404_NOT_FOUND
  code = "not_found"


class NotAuthorized(NotFound):
  # Rendered exactly like a missing project so non-members learn nothing.
  pass


class Conflict(ApiError):
  status_code_default = status.HTTP_409_CONFLICT
  code = "conflict"


class PayloadTooLarge(ApiError):
  status_code_default = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
  code = "payload_too_large"


class RateLimited(ApiError):
  status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
  code = "rate_limited"


class UpstreamFailure(ApiError):
  status_code_default = status.HTTP_502_BAD_GATEWAY
  code = "upstream_failure"


PROJECT_NOT_FOUND = "Project not found or you do not have access."


def field_errors(raw: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Flatten pydantic validation errors into ``{field, message}`` entries."""
  out: list[dict[str, Any]] = []
  for e in raw:
    loc = [str(p) for p in e.get("loc", ()) if p not in ("body", "query", "path")]
    out.append({"field": ".".join(loc) or None, "message": e.get("msg", "Invalid value")})
  return out
