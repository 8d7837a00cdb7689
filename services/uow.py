from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from services.errors import BookingError, Conflict, InternalError


@contextmanager
def unit_of_work(conflict_message: str = "Conflicting update, please retry"):
    """Commit everything done inside the block, or nothing.

    Domain errors propagate unchanged after the rollback; storage failures
    are mapped onto the error taxonomy.
    """
    try:
        yield db.session
        db.session.commit()
    except BookingError:
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        raise Conflict(conflict_message) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise InternalError("Storage failure, nothing was changed") from exc
    except Exception:
        db.session.rollback()
        raise
