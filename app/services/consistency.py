from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import ConsistencyViolation

logger = logging.getLogger("app.consistency")


@contextmanager
def guarded_write(db: Session, *, invariant: str, **context: Any) -> Iterator[None]:
    """Commit the block's changes as one unit or none of them.

    A constraint rejected by the database means two writers got past the
    in-process lock: it is logged as an error and surfaced, never merged.
    """
    try:
        yield
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.error(
            "attendance_consistency_violation",
            extra={
                "invariant": invariant,
                "db_error": str(getattr(exc, "orig", exc)),
                **context,
            },
        )
        raise ConsistencyViolation(f"Consistency violation: {invariant}.") from exc
    except Exception:
        db.rollback()
        raise
