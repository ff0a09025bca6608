"""
Transaction Helper Service

Every multi-table mutation of the back-office runs through
with_transaction so a failing step leaves no partial ledger state.
"""

from functools import wraps
from typing import Callable
import logging
import time
from sqlalchemy.exc import OperationalError, DisconnectionError
from app import db

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 0.5
DEPTH_KEY = 'service_transaction_depth'


def _is_service_result(result) -> bool:
    return isinstance(result, tuple) and len(result) >= 2 and isinstance(result[0], bool)


class TransactionHelper:
    """Commit/rollback policy shared by all service methods"""

    @staticmethod
    def in_transaction() -> bool:
        """True while a with_transaction-wrapped call is running on this session."""
        return db.session.info.get(DEPTH_KEY, 0) > 0

    @staticmethod
    def with_transaction(func: Callable) -> Callable:
        """
        Wrap a service method returning `(success, error_msg, payload)`.

        The outermost wrapped call owns the transaction: success commits,
        failure rolls back everything the call (and any wrapped service it
        called) wrote. Nested wrapped calls neither commit nor roll back; an
        inner failure is returned to the outer call, which decides.

        A dropped connection is retried from scratch at the outermost level.
        Any other exception rolls back and propagates.

        Usage:
            @TransactionHelper.with_transaction
            def approve_report(self, report_id, approved_by):
                ...
        """
        @wraps(func)
        def wrapper(*args, **kwargs):
            if TransactionHelper.in_transaction():
                return TransactionHelper._run_nested(func, *args, **kwargs)

            for attempt in range(1, MAX_ATTEMPTS + 1):
                db.session.info[DEPTH_KEY] = 1
                try:
                    result = func(*args, **kwargs)
                    if _is_service_result(result) and not result[0]:
                        db.session.rollback()
                        logger.info(f"{func.__name__} refused: {result[1]}")
                    else:
                        db.session.commit()
                    return result

                except (DisconnectionError, OperationalError) as e:
                    db.session.rollback()
                    if attempt == MAX_ATTEMPTS:
                        logger.error(f"{func.__name__} failed after {MAX_ATTEMPTS} attempts: {str(e)}")
                        raise
                    logger.warning(f"{func.__name__} lost its connection (attempt {attempt}/{MAX_ATTEMPTS}): {str(e)}")
                    time.sleep(RETRY_DELAY_SECONDS)

                except Exception as e:
                    db.session.rollback()
                    logger.error(f"Transaction rolled back in {func.__name__}: {str(e)}")
                    raise

                finally:
                    db.session.info[DEPTH_KEY] = 0
            return None
        return wrapper

    @staticmethod
    def _run_nested(func: Callable, *args, **kwargs):
        db.session.info[DEPTH_KEY] += 1
        try:
            return func(*args, **kwargs)
        finally:
            db.session.info[DEPTH_KEY] -= 1
