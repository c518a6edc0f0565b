from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from recovery_mode.core.db.tables.base import Base


NETWORK_SCOPE = "network"
BLOG_SCOPE = "blog"


class Option(Base):
    """
    Named site configuration values.

    Storage design:
    - scope: "network" for installation-wide records (recovery key, email
      rate limit, generated signing secrets), "blog" for per-site records
    - scope_id: network id or blog id the record belongs to
    - name: option name, unique within a scope
    - value: JSON encoded value
    """
    __tablename__ = "option"

    scope: Mapped[str] = mapped_column(String(16), primary_key=True)
    scope_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(191), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
