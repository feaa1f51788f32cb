"""Sequential document numbers: <PREFIX>-<year>-<seq>, e.g. SOL-2026-007."""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

REQUEST_PREFIX = "SOL"
QUOTATION_PREFIX = "COT"
ORDER_PREFIX = "PED"


async def next_document_number(session: AsyncSession, column, prefix: str) -> str:
    stem = f"{prefix}-{datetime.utcnow().year}-"
    result = await session.execute(select(column).where(column.like(f"{stem}%")))

    max_sequence = 0
    for (number,) in result.all():
        suffix = number[len(stem):]
        if suffix.isdigit():
            max_sequence = max(max_sequence, int(suffix))

    return f"{stem}{max_sequence + 1:03d}"


NUMBER_COLUMNS = ("request_number", "quotation_number", "order_number")


def is_number_collision(exc: IntegrityError) -> bool:
    """True when a unique document number was taken by a concurrent commit."""
    message = str(exc.orig)
    return ("unique" in message.lower() or "duplicate" in message.lower()) and any(
        column in message for column in NUMBER_COLUMNS
    )
