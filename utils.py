import functools
import logging
import time
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)


def utcnow():
    """Current UTC time as a naive datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    if value is None:
        return None
    return value.isoformat()


def money(value):
    if value is None:
        return 0.0
    return float(Decimal(value).quantize(Decimal('0.01')))


def parse_date(value):
    """Parse an ISO ``YYYY-MM-DD`` string, returning None when it is not one."""
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


# Retry decorator
def retry_db_operation(max_attempts=3, delay=1):
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            attempts = 0
            while attempts < max_attempts:
                try:
                    return func(*args, **kwargs)
                except OperationalError as e:
                    from models import db
                    logger.error(f"Database operation failed: {str(e)}")
                    db.session.rollback()
                    attempts += 1
                    if attempts == max_attempts:
                        raise
                    time.sleep(delay)
                    logger.debug(f"Retrying database operation ({attempts}/{max_attempts})")
            return None
        return wrapper
    return decorator
