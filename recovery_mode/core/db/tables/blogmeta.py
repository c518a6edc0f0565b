from typing import Any

from sqlalchemy import JSON, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from recovery_mode.core.db.tables.base import Base


class BlogMeta(Base):
    """Per-site metadata rows, one row per key, used on multi-site installs."""

    __tablename__ = "blogmeta"

    meta_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    blog_id: Mapped[int] = mapped_column(Integer, index=True)
    meta_key: Mapped[str] = mapped_column(String(255), index=True)
    meta_value: Mapped[Any] = mapped_column(JSON, nullable=True)
