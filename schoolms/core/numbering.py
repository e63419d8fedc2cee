"""Human-readable document numbers: INV-2025-00001, PAY-2025-00001, RCP-2025-00001, CLR-2025-00001."""

from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

INVOICE_PREFIX = "INV"
PAYMENT_PREFIX = "PAY"
RECEIPT_PREFIX = "RCP"
CLEARANCE_PREFIX = "CLR"

SEQUENCE_WIDTH = 5


def format_number(prefix: str, year: int, seq: int) -> str:
    return f"{prefix}-{year}-{seq:0{SEQUENCE_WIDTH}d}"


def parse_sequence(number: Optional[str]) -> int:
    """Trailing sequence of a document number; 0 when missing or malformed."""
    if not number:
        return 0
    tail = number.rsplit("-", 1)[-1]
    return int(tail) if tail.isdigit() else 0


class NumberSequence:
    """
    Hands out consecutive numbers for one prefix and year.
    Seeded from the highest number already stored, then incremented locally so a batch
    inside one transaction never reuses a number.
    """

    def __init__(self, prefix: str, year: int, last_seq: int) -> None:
        self.prefix = prefix
        self.year = year
        self.last_seq = last_seq

    @classmethod
    async def start(cls, db: AsyncSession, column, prefix: str, year: Optional[int] = None) -> "NumberSequence":
        if year is None:
            year = date.today().year
        pattern = f"{prefix}-{year}-%"
        # Longer numbers are higher sequences once they grow past the padding width
        result = await db.execute(
            select(column)
            .where(column.like(pattern))
            .order_by(func.length(column).desc(), column.desc())
            .limit(1)
        )
        return cls(prefix, year, parse_sequence(result.scalar_one_or_none()))

    def next(self) -> str:
        self.last_seq += 1
        return format_number(self.prefix, self.year, self.last_seq)


async def next_number(db: AsyncSession, column, prefix: str, year: Optional[int] = None) -> str:
    seq = await NumberSequence.start(db, column, prefix, year)
    return seq.next()
