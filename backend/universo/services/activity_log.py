"""Thin helper for writing activity log entries."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from universo.models import ActivityLog

logger = logging.getLogger(__name__)


def get_trigger_name(user: dict) -> str:
    """Extract display name from current_user dict for activity log."""
    return user.get("email") or str(user.get("user_id") or "") or "unknown"


async def log_activity(
    db: AsyncSession,
    operation: str,
    status: str,
    message: str | None = None,
    details: dict | None = None,
    triggered_by: str | None = None,
) -> None:
    """Add one row to activity_logs in the caller's transaction.

    The entry commits or rolls back together with the operation it
    describes. A failure to write the entry is logged and does not fail
    the operation.
    """
    entry = ActivityLog(
        operation=operation,
        status=status,
        message=message,
        details=details,
        triggered_by=triggered_by,
    )
    try:
        async with db.begin_nested():
            db.add(entry)
    except SQLAlchemyError:
        logger.exception("Failed to write activity log")
