from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from passlib.context import CryptContext

from projectcamp.config import settings
from projectcamp.errors import NotAuthenticated

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_COOKIE_NAME = "accessToken"
REFRESH_COOKIE_NAME = "refreshToken"
JWT_ALGORITHM = "HS256"


def hash_password(password: str) -> str:
  return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
  return pwd_context.verify(password, password_hash)


def _sign(claims: dict[str, Any], secret: str, ttl: timedelta) -> str:
  now = datetime.now(timezone.utc)
  body = {**claims, "iat": now, "exp": now + ttl}
  return jwt.encode(body, secret, algorithm=JWT_ALGORITHM)


def _verify(token: str, secret: str, expected_type: str) -> dict[str, Any]:
  try:
    claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
  except jwt.ExpiredSignatureError as exc:
    raise NotAuthenticated("Token expired") from exc
  except jwt.InvalidTokenError as exc:
    raise NotAuthenticated("Invalid token") from exc
  if claims.get("type") != expected_type or not claims.get("sub"):
    raise NotAuthenticated("Invalid token")
  return claims


def create_access_token(user_id: str) -> str:
  return _sign(
    {"sub": user_id, "type": "access"},
    settings.access_token_secret,
    timedelta(minutes=int(settings.access_token_ttl_minutes)),
  )


def create_refresh_token(user_id: str) -> str:
  # jti keeps two refreshes issued within the same second distinct
  return _sign(
    {"sub": user_id, "type": "refresh", "jti": secrets.token_hex(8)},
    settings.refresh_token_secret,
    timedelta(days=int(settings.refresh_token_ttl_days)),
  )


def decode_access_token(token: str) -> dict[str, Any]:
  return _verify(token, settings.access_token_secret, "access")


def decode_refresh_token(token: str) -> dict[str, Any]:
  return _verify(token, settings.refresh_token_secret, "refresh")


def refresh_token_hash(token: str) -> str:
  # Keyed hash so a leaked users table does not hand out live sessions.
  key = (settings.refresh_token_secret or "").encode("utf-8")
  return hmac.new(key, (token or "").strip().encode("utf-8"), hashlib.sha256).hexdigest()


def new_email_token() -> tuple[str, str, datetime]:
  """Returns (raw token for the link, hash to store, expiry)."""
  raw = secrets.token_urlsafe(32)
  expires = datetime.now(timezone.utc) + timedelta(minutes=int(settings.email_token_ttl_minutes))
  return raw, email_token_hash(raw), expires


def email_token_hash(token: str) -> str:
  return hashlib.sha256((token or "").encode("utf-8")).hexdigest()
