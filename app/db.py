from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from app.config import settings

APPLICATION_NAME = "plugin_market"


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """created_at / updated_at columns shared by the billing tables.

    Both are stored timezone-aware; SQLite drops the offset, so readers go
    through ``app.services.common.as_utc`` before comparing.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


def engine_options(database_url: str) -> dict[str, Any]:
    """Keyword arguments for ``create_engine`` based on the backend."""
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    options: dict[str, Any] = {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout,
        "pool_recycle": settings.db_pool_recycle,
    }
    if database_url.startswith("postgresql"):
        # Shows up in pg_stat_activity next to the webhook and checkout queries.
        options["connect_args"] = {"application_name": APPLICATION_NAME}
    return options


def get_engine():
    return create_engine(settings.database_url, **engine_options(settings.database_url))


SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)
