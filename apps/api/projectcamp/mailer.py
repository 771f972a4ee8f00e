from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

from projectcamp.config import settings

log = logging.getLogger("projectcamp.mailer")

PRODUCT_NAME = "Project Camp"


class MailDeliveryError(RuntimeError):
  pass


@dataclass(frozen=True)
class MailMessage:
  to: str
  subject: str
  text: str
  html: str


class Mailer(Protocol):
  async def send(self, msg: MailMessage) -> None: ...


class LocalMailer:
  """Keeps sent mail in memory. Default for development and tests."""

  def __init__(self) -> None:
    self.outbox: list[MailMessage] = []

  async def send(self, msg: MailMessage) -> None:
    self.outbox.append(msg)


class SmtpMailer:
  def __init__(
    self,
    *,
    host: str,
    port: int,
    username: str | None,
    password: str | None,
    from_addr: str,
    starttls: bool = True,
  ) -> None:
    self.host = host
    self.port = port
    self.username = username
    self.password = password
    self.from_addr = from_addr
    self.starttls = starttls

  async def send(self, msg: MailMessage) -> None:
    def _send_sync() -> None:
      m = EmailMessage()
      m["Subject"] = msg.subject
      m["From"] = self.from_addr
      m["To"] = msg.to
      m.set_content(msg.text)
      m.add_alternative(msg.html, subtype="html")
      with smtplib.SMTP(host=self.host, port=self.port, timeout=15) as s:
        s.ehlo()
        if self.starttls:
          s.starttls()
          s.ehlo()
        if self.username and self.password:
          s.login(self.username, self.password)
        s.send_message(m)

    try:
      await asyncio.to_thread(_send_sync)
    except (OSError, smtplib.SMTPException) as exc:
      raise MailDeliveryError(str(exc)) from exc


def _render(*, to: str, subject: str, name: str, intro: str, instructions: str, button: str, link: str) -> MailMessage:
  outro = "Need help, or have questions? Just reply to this email, we'd love to help."
  text = f"Hi {name},\n\n{intro}\n\n{instructions}\n{link}\n\n{outro}\n\n{PRODUCT_NAME}\n"
  body = (
    f"<p>Hi {html.escape(name)},</p>"
    f"<p>{html.escape(intro)}</p>"
    f"<p>{html.escape(instructions)}</p>"
    f'<p><a href="{html.escape(link, quote=True)}" style="background:#22BC66;color:#fff;padding:10px 16px;'
    f'text-decoration:none;border-radius:4px">{html.escape(button)}</a></p>'
    f"<p>{html.escape(outro)}</p>"
  )
  return MailMessage(to=to, subject=subject, text=text, html=body)


def email_verification_message(*, to: str, username: str, verification_url: str) -> MailMessage:
  return _render(
    to=to,
    subject="Verify your email",
    name=username,
    intro=f"Welcome to {PRODUCT_NAME}! We're very excited to have you on board.",
    instructions="To get started, please verify your email:",
    button="Verify your email",
    link=verification_url,
  )


def forgot_password_message(*, to: str, username: str, reset_url: str) -> MailMessage:
  return _render(
    to=to,
    subject="Your password reset link",
    name=username,
    intro="We got a request to reset your password.",
    instructions="To change your password, follow this link:",
    button="Reset password",
    link=reset_url,
  )


async def send_best_effort(mailer: Mailer, msg: MailMessage) -> bool:
  """Deliver a message; a failure is logged and reported as False."""
  try:
    await mailer.send(msg)
  except MailDeliveryError as exc:
    log.warning("mail delivery failed subject=%r: %s", msg.subject, exc)
    return False
  return True


def mailer_for(provider: str) -> Mailer:
  if provider == "smtp" and settings.smtp_host:
    return SmtpMailer(
      host=settings.smtp_host,
      port=int(settings.smtp_port),
      username=settings.smtp_username,
      password=settings.smtp_password,
      from_addr=settings.smtp_from,
      starttls=settings.smtp_starttls,
    )
  return LocalMailer()


mailer: Mailer = mailer_for(settings.mail_provider)


def get_mailer() -> Mailer:
  return mailer
