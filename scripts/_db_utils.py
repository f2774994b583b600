from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session

from app.tenanthub.db import build_engine, make_sessionmaker


@contextmanager
def script_session(db_url: str) -> Iterator[Session]:
    """Session for one-off scripts; commits on success, always disposes the engine."""
    engine = build_engine(db_url)
    s: Session = make_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
