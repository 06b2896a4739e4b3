from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from app import settings

Base = declarative_base()


class Database:
    """Store handle: one engine + session factory per process (or per test)."""

    def __init__(self, url: str | None = None) -> None:
        self.url = url or settings.DATABASE_URL
        # SQLite is shared with the FastAPI threadpool
        connect_args = {"check_same_thread": False} if self.url.startswith("sqlite") else {}
        self.engine = create_engine(
            self.url,
            connect_args=connect_args,
            pool_pre_ping=True,
        )
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Transaction scope: commit on success, rollback on error."""
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def create_all(self) -> None:
        # models must be imported so their tables are registered on Base
        from app.storage import models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)

    def reset(self) -> None:
        """Drop and recreate every table."""
        from app.storage import models  # noqa: F401
        Base.metadata.drop_all(bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()
