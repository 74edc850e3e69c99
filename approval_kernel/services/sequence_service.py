"""
Counters behind request numbers.

A ``SequenceCounter`` row holds the last value handed out for one named
counter.  ``SequenceService.next_value`` locks that row and bumps it in the
caller's transaction, so two transactions can never receive the same value
and a rolled-back transaction gives its value back.

``RequestNumberGenerator`` keeps one counter per UTC month and renders
``REQ-YYYYMM-NNNNN``.  A month counter that does not exist yet starts after
the greatest number already stored for that month; numbers are never
derived from ``MAX(request_number)`` once the counter exists.

Nothing here commits.  A concurrent first use of the same counter name
loses the unique-constraint race inside a savepoint and re-reads the
winner's row.
"""

import re
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import BigInteger, String, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from approval_kernel.db.base import Base
from approval_kernel.domain.clock import Clock
from approval_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """Last value issued for one named counter, e.g. ``request_number:202505``."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    current_value: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


class SequenceService:
    """
    Locked increments on ``sequence_counters``.

    Usage:
        with session_scope() as session:
            value = SequenceService(session).next_value("request_number:202505")
    """

    def __init__(self, session: Session):
        self._session = session

    def _find(self, name: str, lock: bool = True) -> SequenceCounter | None:
        stmt = select(SequenceCounter).where(SequenceCounter.name == name)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def _create(self, name: str, start: int) -> bool:
        """Insert a new counter at ``start``; False if another transaction beat us."""
        savepoint = self._session.begin_nested()
        try:
            self._session.add(SequenceCounter(name=name, current_value=start))
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
            return False
        savepoint.commit()
        return True

    def _increment(self, counter: SequenceCounter) -> int:
        self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.id == counter.id)
            .values(current_value=SequenceCounter.current_value + 1)
        )
        self._session.refresh(counter)
        return counter.current_value

    def next_value(
        self,
        sequence_name: str,
        seed: Callable[[], int] | None = None,
    ) -> int:
        """
        Next value of ``sequence_name``, always positive.

        ``seed`` is consulted only when the counter is created; the first
        value issued is ``seed() + 1``.
        """
        counter = self._find(sequence_name)
        if counter is None:
            start = (seed() if seed is not None else 0) + 1
            if self._create(sequence_name, start):
                value = start
            else:
                counter = self._find(sequence_name)
                if counter is None:
                    raise RuntimeError(f"sequence counter {sequence_name!r} vanished after race")
                value = self._increment(counter)
        else:
            value = self._increment(counter)

        if value <= 0:
            raise RuntimeError(f"sequence {sequence_name!r} produced non-positive value {value}")
        logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": value})
        return value

    def current_value(self, sequence_name: str) -> int | None:
        counter = self._find(sequence_name, lock=False)
        return None if counter is None else counter.current_value

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """Force a counter to ``value``.  Lowering it below issued numbers causes collisions."""
        counter = self._find(sequence_name)
        if counter is None:
            self._session.add(SequenceCounter(name=sequence_name, current_value=value))
        else:
            counter.current_value = value
        self._session.flush()


class RequestNumberGenerator:
    """
    Allocates ``{prefix}-{YYYYMM}-{NNNNN}`` request numbers.

    Contract:
        The period comes from the injected clock (UTC month).  The sequence
        restarts at 1 each month and is zero-padded to ``width`` digits.
    """

    COUNTER_PREFIX = "request_number"

    def __init__(
        self,
        session: Session,
        clock: Clock,
        prefix: str = "REQ",
        width: int = 5,
    ):
        self._session = session
        self._clock = clock
        self._prefix = prefix
        self._width = width
        self._sequences = SequenceService(session)

    @staticmethod
    def period_of(moment: datetime) -> str:
        return moment.strftime("%Y%m")

    def current_period(self) -> str:
        return self.period_of(self._clock.now())

    def counter_name(self, period: str) -> str:
        return f"{self.COUNTER_PREFIX}:{period}"

    def format(self, period: str, value: int) -> str:
        return f"{self._prefix}-{period}-{value:0{self._width}d}"

    def parse_sequence(self, request_number: str) -> int | None:
        """Trailing sequence of a number, or None if it is not ours."""
        match = re.fullmatch(
            rf"{re.escape(self._prefix)}-\d{{6}}-(\d+)", request_number or "",
        )
        return int(match.group(1)) if match else None

    def _existing_max(self, period: str) -> int:
        # Local import: models import this module's Base only.
        from approval_kernel.models.request import ApprovalRequestModel

        greatest = self._session.execute(
            select(func.max(ApprovalRequestModel.request_number))
            .where(ApprovalRequestModel.request_number.like(f"{self._prefix}-{period}-%"))
        ).scalar_one_or_none()
        if greatest is None:
            return 0
        return self.parse_sequence(greatest) or 0

    def next_number(self, period: str | None = None) -> str:
        """Allocate the next request number for ``period`` (default: now)."""
        period = period or self.current_period()
        value = self._sequences.next_value(
            self.counter_name(period),
            seed=lambda: self._existing_max(period),
        )
        number = self.format(period, value)
        logger.info(
            "request_number_allocated",
            extra={"period": period, "sequence": value, "request_number": number},
        )
        return number
