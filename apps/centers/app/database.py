from contextlib import contextmanager
from typing import Callable, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from .config import settings

T = TypeVar("T")

_TX_DEPTH = "tx_depth"

connect_args = {"check_same_thread": False} if settings.DB_URL.startswith("sqlite") else {}

engine = create_engine(settings.DB_URL, pool_pre_ping=True, future=True, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


@contextmanager
def session_scope():
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def use_transaction(db: Session, fn: Callable[[Session], T]) -> T:
    """Run ``fn`` inside a transaction on ``db``.

    Nested calls join the outer transaction; only the outermost call
    commits or rolls back.
    """
    depth = db.info.get(_TX_DEPTH, 0)
    db.info[_TX_DEPTH] = depth + 1
    try:
        result = fn(db)
        if depth == 0:
            db.commit()
        return result
    except Exception:
        if depth == 0:
            db.rollback()
        raise
    finally:
        db.info[_TX_DEPTH] = depth
