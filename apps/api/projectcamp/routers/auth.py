from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Cookie, Depends, Request, Response, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from projectcamp.config import settings
from projectcamp.deps import client_ip, get_current_user, get_db
from projectcamp.errors import Conflict, InvalidInput, NotAuthenticated, PreconditionFailed
from projectcamp.mailer import Mailer, email_verification_message, forgot_password_message, get_mailer, send_best_effort
from projectcamp.models import User, as_utc
from projectcamp.rate_limit import enforce
from projectcamp.schemas import (
  ChangePasswordIn,
  ForgotPasswordIn,
  LoginIn,
  LoginOut,
  RefreshTokenIn,
  RegisterIn,
  ResendVerificationIn,
  ResetPasswordIn,
  TokenPairOut,
  UserOut,
)
from projectcamp.security import (
  ACCESS_COOKIE_NAME,
  REFRESH_COOKIE_NAME,
  create_access_token,
  create_refresh_token,
  decode_refresh_token,
  email_token_hash,
  hash_password,
  new_email_token,
  refresh_token_hash,
  verify_password,
)
from projectcamp.serializers import user_out

log = logging.getLogger("projectcamp.auth")

router = APIRouter(prefix="/api/v1/users", tags=["auth"])


def _normalize_email(email: str) -> str:
  return (email or "").strip().lower()


def _set_auth_cookies(response: Response, *, access: str, refresh: str) -> None:
  now = datetime.now(timezone.utc)
  access_ttl = timedelta(minutes=int(settings.access_token_ttl_minutes))
  refresh_ttl = timedelta(days=int(settings.refresh_token_ttl_days))
  for key, value, ttl in ((ACCESS_COOKIE_NAME, access, access_ttl), (REFRESH_COOKIE_NAME, refresh, refresh_ttl)):
    response.set_cookie(
      key=key,
      value=value,
      httponly=True,
      secure=settings.cookie_secure,
      samesite="lax",
      domain=settings.cookie_domain or None,
      max_age=int(ttl.total_seconds()),
      expires=now + ttl,
      path="/",
    )


def _clear_auth_cookies(response: Response) -> None:
  response.delete_cookie(key=ACCESS_COOKIE_NAME, path="/", domain=settings.cookie_domain or None)
  response.delete_cookie(key=REFRESH_COOKIE_NAME, path="/", domain=settings.cookie_domain or None)


def _issue_tokens(u: User) -> tuple[str, str]:
  access = create_access_token(u.id)
  refresh = create_refresh_token(u.id)
  u.refresh_token_hash = refresh_token_hash(refresh)
  return access, refresh


def _link(path: str) -> str:
  return f"{settings.public_base_url.rstrip('/')}/api/v1/users/{path}"


def _stage_verification(u: User) -> str:
  """Store a fresh verification token hash on the user; returns the link to mail."""
  raw, hashed, expires = new_email_token()
  u.email_verification_token_hash = hashed
  u.email_verification_expiry = expires
  return _link(f"verify/{raw}")


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def register(
  payload: RegisterIn,
  db: AsyncSession = Depends(get_db),
  mailer: Mailer = Depends(get_mailer),
) -> UserOut:
  email = _normalize_email(payload.email)
  exists = await db.execute(select(User.id).where(User.email == email))
  if exists.scalar_one_or_none():
    raise Conflict("User with this email already exists.")

  u = User(email=email, username=payload.username, fullname=payload.fullname, password_hash=hash_password(payload.password))
  db.add(u)
  try:
    await db.flush()
  except IntegrityError as exc:
    await db.rollback()
    raise Conflict("User with this email already exists.") from exc

  url = _stage_verification(u)
  await db.commit()

  await send_best_effort(mailer, email_verification_message(to=u.email, username=u.username, verification_url=url))
  log.info("user registered id=%s", u.id)
  return user_out(u)


@router.get("/verify/{token}")
async def verify_email(token: str, db: AsyncSession = Depends(get_db)) -> dict:
  res = await db.execute(select(User).where(User.email_verification_token_hash == email_token_hash(token)))
  u = res.scalar_one_or_none()
  if not u:
    raise InvalidInput("Invalid verification token.")
  expiry = as_utc(u.email_verification_expiry)
  if expiry is None or expiry < datetime.now(timezone.utc):
    raise InvalidInput("Verification token has expired.")

  u.is_email_verified = True
  u.email_verification_token_hash = None
  u.email_verification_expiry = None
  await db.commit()
  return {"ok": True, "message": "Email verified successfully."}


@router.post("/login", response_model=LoginOut)
async def login(payload: LoginIn, request: Request, response: Response, db: AsyncSession = Depends(get_db)) -> LoginOut:
  ip = client_ip(request)
  email = _normalize_email(payload.email)
  enforce(f"auth:login:ip:{ip}", limit=int(settings.rate_limit_login_ip_per_minute))
  enforce(f"auth:login:email:{email}", limit=int(settings.rate_limit_login_email_per_minute))

  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  if not u or not verify_password(payload.password, u.password_hash):
    log.info("login failed ip=%s", ip)
    raise NotAuthenticated("Invalid email or password.")
  if not u.is_email_verified:
    raise PreconditionFailed("Please verify your email before logging in.")

  access, refresh = _issue_tokens(u)
  await db.commit()
  _set_auth_cookies(response, access=access, refresh=refresh)
  return LoginOut(user=user_out(u), accessToken=access, refreshToken=refresh)


@router.post("/logout")
async def logout(response: Response, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  user.refresh_token_hash = None
  await db.commit()
  _clear_auth_cookies(response)
  return {"ok": True}


@router.post("/resend-verification")
async def resend_verification(
  payload: ResendVerificationIn,
  request: Request,
  db: AsyncSession = Depends(get_db),
  mailer: Mailer = Depends(get_mailer),
) -> dict:
  email = _normalize_email(payload.email)
  enforce(f"auth:verify:ip:{client_ip(request)}", limit=int(settings.rate_limit_password_reset_ip_per_minute))

  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  if not u or not verify_password(payload.password, u.password_hash):
    raise NotAuthenticated("Invalid email or password.")
  if u.is_email_verified:
    raise InvalidInput("Email is already verified.")

  url = _stage_verification(u)
  await db.commit()
  await send_best_effort(mailer, email_verification_message(to=u.email, username=u.username, verification_url=url))
  return {"ok": True}


@router.post("/refresh-token", response_model=TokenPairOut)
async def refresh_access_token(
  response: Response,
  payload: RefreshTokenIn | None = None,
  refresh_cookie: str | None = Cookie(default=None, alias=REFRESH_COOKIE_NAME),
  db: AsyncSession = Depends(get_db),
) -> TokenPairOut:
  token = refresh_cookie or (payload.refreshToken if payload else None)
  if not token:
    raise NotAuthenticated("Refresh token is missing.")
  claims = decode_refresh_token(token)

  res = await db.execute(select(User).where(User.id == claims["sub"]))
  u = res.scalar_one_or_none()
  if not u or not u.refresh_token_hash or u.refresh_token_hash != refresh_token_hash(token):
    raise NotAuthenticated("Refresh token is expired or already used.")

  access, refresh = _issue_tokens(u)
  await db.commit()
  _set_auth_cookies(response, access=access, refresh=refresh)
  return TokenPairOut(accessToken=access, refreshToken=refresh)


@router.post("/forgot-password")
async def forgot_password(
  payload: ForgotPasswordIn,
  request: Request,
  db: AsyncSession = Depends(get_db),
  mailer: Mailer = Depends(get_mailer),
) -> dict:
  email = _normalize_email(payload.email)
  enforce(f"auth:pwreset:ip:{client_ip(request)}", limit=int(settings.rate_limit_password_reset_ip_per_minute))
  enforce(f"auth:pwreset:email:{email}", limit=int(settings.rate_limit_password_reset_email_per_minute))

  # Always ok to avoid account enumeration.
  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  if not u:
    return {"ok": True}

  raw, hashed, expires = new_email_token()
  u.forgot_password_token_hash = hashed
  u.forgot_password_expiry = expires
  await db.commit()

  url = _link(f"reset-password/{raw}")
  await send_best_effort(mailer, forgot_password_message(to=u.email, username=u.username, reset_url=url))
  return {"ok": True}


@router.post("/reset-password/{token}")
async def reset_password(token: str, payload: ResetPasswordIn, db: AsyncSession = Depends(get_db)) -> dict:
  res = await db.execute(select(User).where(User.forgot_password_token_hash == email_token_hash(token)))
  u = res.scalar_one_or_none()
  if not u:
    raise InvalidInput("Invalid password reset token.")
  expiry = as_utc(u.forgot_password_expiry)
  if expiry is None or expiry < datetime.now(timezone.utc):
    raise InvalidInput("Password reset token has expired.")

  u.password_hash = hash_password(payload.newPassword)
  u.forgot_password_token_hash = None
  u.forgot_password_expiry = None
  # Existing sessions end with the old password.
  u.refresh_token_hash = None
  await db.commit()
  log.info("password reset completed user=%s", u.id)
  return {"ok": True}


@router.post("/change-password")
async def change_password(
  payload: ChangePasswordIn,
  response: Response,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  if not verify_password(payload.oldPassword, user.password_hash):
    raise InvalidInput("Current password is incorrect.", errors=[{"field": "oldPassword", "message": "is incorrect"}])
  user.password_hash = hash_password(payload.newPassword)
  user.refresh_token_hash = None
  await db.commit()
  _clear_auth_cookies(response)
  return {"ok": True}


@router.get("/current-user", response_model=UserOut)
async def current_user(user: User = Depends(get_current_user)) -> UserOut:
  return user_out(user)
