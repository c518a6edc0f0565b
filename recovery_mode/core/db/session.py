from sqlalchemy.orm import sessionmaker

from recovery_mode.core.db.engine import engine

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
