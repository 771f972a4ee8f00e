from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://projectcamp:projectcamp@db:5432/projectcamp"
  app_version: str = "0.1.0"
  api_docs_enabled: bool = True
  log_level: str = "INFO"

  access_token_secret: str = "dev-access-secret-change-me"
  refresh_token_secret: str = "dev-refresh-secret-change-me"
  access_token_ttl_minutes: int = 24 * 60
  refresh_token_ttl_days: int = 7
  email_token_ttl_minutes: int = 60

  cookie_secure: bool = False
  cookie_domain: str | None = None

  rate_limit_login_ip_per_minute: int = 60
  rate_limit_login_email_per_minute: int = 20
  rate_limit_password_reset_ip_per_minute: int = 10
  rate_limit_password_reset_email_per_minute: int = 5
  redis_url: str | None = None

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
  cors_origin_regex: str = r"^http://(localhost|127\.0\.0\.1):3000$"
  trusted_hosts: str = "localhost,127.0.0.1,0.0.0.0,api"

  public_base_url: str = "http://localhost:8000"

  mail_provider: str = "local"  # local | smtp
  smtp_host: str | None = None
  smtp_port: int = 587
  smtp_username: str | None = None
  smtp_password: str | None = None
  smtp_from: str = "Project Camp <no-reply@projectcamp.local>"
  smtp_starttls: bool = True

  upload_dir: str = "data/uploads"
  upload_base_url: str = "/uploads"
  max_attachment_bytes: int = 10 * 1024 * 1024
  max_attachments_per_request: int = 5

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def trusted_host_list(self) -> list[str]:
    return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]

  def is_test_db(self) -> bool:
    db_name = self.database_url.rsplit("/", 1)[-1]
    return "test" in db_name


settings = Settings()
