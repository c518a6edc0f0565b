import os
from pathlib import Path
from sqlalchemy import create_engine

database_url = os.getenv("RECOVERY_MODE_DB_URL") or "sqlite:///.data/recovery_mode.db"

# Ensure the .data directory exists
if database_url.startswith("sqlite:///.data/"):
    Path(".data").mkdir(exist_ok=True)

engine = create_engine(
    database_url,
    echo=False,
    pool_pre_ping=True,
    pool_recycle=3600,
)

# Create all tables on import
from recovery_mode.core.db.tables.base import Base
from recovery_mode.core.db.tables.option import Option
from recovery_mode.core.db.tables.blogmeta import BlogMeta

Base.metadata.create_all(engine)
