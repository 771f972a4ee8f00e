from __future__ import annotations

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from projectcamp.config import settings

engine = create_async_engine(settings.database_url, pool_pre_ping=True)

# Handlers keep using loaded rows after commit to build responses.
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)
