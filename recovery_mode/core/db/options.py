"""
Key-value storage collaborators backed by the database.

Values are JSON documents. Reads return copies, so callers can modify what
they get back without touching the loaded row.
"""
import copy
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from recovery_mode.core.db.tables.blogmeta import BlogMeta
from recovery_mode.core.db.tables.option import BLOG_SCOPE, NETWORK_SCOPE, Option
from recovery_mode.core.logger import get_logger

logger = get_logger(__name__)


class OptionStore:
    """Options of one scope: the whole network, or a single blog."""

    def __init__(self, session: Session, scope: str = BLOG_SCOPE, scope_id: int = 1):
        self.session = session
        self.scope = scope
        self.scope_id = scope_id

    @classmethod
    def network(cls, session: Session, network_id: int = 1) -> "OptionStore":
        return cls(session, NETWORK_SCOPE, network_id)

    def _row(self, name: str) -> Option | None:
        return self.session.execute(
            select(Option).where(
                Option.scope == self.scope,
                Option.scope_id == self.scope_id,
                Option.name == name,
            )
        ).scalar()

    def get(self, name: str, default: Any = None) -> Any:
        row = self._row(name)
        if row is None or row.value is None:
            return default
        return copy.deepcopy(row.value)

    def update(self, name: str, value: Any) -> bool:
        """Insert or replace an option. Storing an unchanged value succeeds without a write."""
        row = self._row(name)
        if row is None:
            self.session.add(Option(scope=self.scope, scope_id=self.scope_id, name=name, value=value))
        elif row.value == value:
            return True
        else:
            row.value = copy.deepcopy(value)
        return self._commit(f"update option {self.scope}:{name}")

    def delete(self, name: str) -> bool:
        row = self._row(name)
        if row is None:
            return False
        self.session.delete(row)
        return self._commit(f"delete option {self.scope}:{name}")

    def _commit(self, action: str) -> bool:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.error(f"Database error during {action}", exc_info=True)
            return False
        return True


class MetaStore:
    """Metadata rows of one blog, one row per key."""

    def __init__(self, session: Session, blog_id: int = 1):
        self.session = session
        self.blog_id = blog_id

    def _row(self, key: str) -> BlogMeta | None:
        return self.session.execute(
            select(BlogMeta)
            .where(BlogMeta.blog_id == self.blog_id, BlogMeta.meta_key == key)
            .order_by(BlogMeta.meta_id)
            .limit(1)
        ).scalar()

    def get(self, key: str, default: Any = None) -> Any:
        row = self._row(key)
        if row is None or row.meta_value is None:
            return default
        return copy.deepcopy(row.meta_value)

    def items(self, prefix: str = "") -> dict[str, Any]:
        rows = self.session.execute(
            select(BlogMeta)
            .where(BlogMeta.blog_id == self.blog_id, BlogMeta.meta_key.startswith(prefix, autoescape=True))
            .order_by(BlogMeta.meta_id)
        ).scalars()
        found: dict[str, Any] = {}
        for row in rows:
            found.setdefault(row.meta_key, copy.deepcopy(row.meta_value))
        return found

    def update(self, key: str, value: Any) -> bool:
        row = self._row(key)
        if row is None:
            self.session.add(BlogMeta(blog_id=self.blog_id, meta_key=key, meta_value=value))
        elif row.meta_value == value:
            return True
        else:
            row.meta_value = copy.deepcopy(value)
        return self._commit(f"update meta {key}")

    def delete(self, key: str) -> bool:
        result = self.session.execute(
            delete(BlogMeta).where(BlogMeta.blog_id == self.blog_id, BlogMeta.meta_key == key)
        )
        if not result.rowcount:
            return False
        return self._commit(f"delete meta {key}")

    def delete_prefix(self, prefix: str) -> bool:
        self.session.execute(
            delete(BlogMeta).where(
                BlogMeta.blog_id == self.blog_id,
                BlogMeta.meta_key.startswith(prefix, autoescape=True),
            )
        )
        return self._commit(f"delete meta {prefix}*")

    def delete_for_all_blogs(self, key: str) -> bool:
        self.session.execute(delete(BlogMeta).where(BlogMeta.meta_key == key))
        return self._commit(f"delete meta {key} on all blogs")

    def _commit(self, action: str) -> bool:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.error(f"Database error during {action}", exc_info=True)
            return False
        return True
