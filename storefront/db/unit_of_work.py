from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Commit everything written through ``db`` inside the block as one unit.

    Any exception rolls the whole unit back and propagates. Writes made before
    entering the block that were not yet committed are part of the unit too.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
