"""
Hour Wallet Ledger

Per (student, course) purchased/consumed minute balances. Every mutation is a
single conditional UPDATE against the wallet row plus an appended
WalletTransaction, so balance checks and deductions cannot interleave.

The module-level primitives take the caller's AsyncSession and run inside the
caller's transaction; WalletLedger wraps them in their own unit of work for
the administrative API.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.database import AsyncSessionLocal
from tutorbook.errors import InsufficientFundsError, NotFoundError, ValidationError
from tutorbook.models.hour_wallet import HourWallet, WalletTransaction, TransactionKind
from tutorbook.models.user import Course, User

logger = logging.getLogger(__name__)

# Administrative add limits (15 minutes .. 100 hours)
MIN_ADD_MINUTES = 15
MAX_ADD_MINUTES = 6000

# Allowed drift between an allocation's parts and its stated total
ALLOCATION_TOLERANCE_HOURS = 0.01


def _dialect_insert(db: AsyncSession):
    """INSERT construct supporting ON CONFLICT for the bound dialect"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Unsupported database dialect for wallet upsert: {dialect}")
    return insert


def _record(
    db: AsyncSession,
    wallet_id: uuid.UUID,
    kind: str,
    minutes: int,
    session_id: Optional[uuid.UUID] = None,
    note: Optional[str] = None,
) -> None:
    db.add(WalletTransaction(
        wallet_id=wallet_id,
        kind=kind,
        minutes=minutes,
        session_id=session_id,
        note=note,
    ))


async def get_wallet(
    db: AsyncSession,
    student_id: uuid.UUID,
    course_id: uuid.UUID,
) -> Optional[HourWallet]:
    result = await db.execute(
        select(HourWallet).where(
            HourWallet.student_id == student_id,
            HourWallet.course_id == course_id,
        )
    )
    return result.scalar_one_or_none()


async def balance(db: AsyncSession, student_id: uuid.UUID, course_id: uuid.UUID) -> int:
    """purchased - consumed, or 0 when the student has no wallet for the course"""
    wallet = await get_wallet(db, student_id, course_id)
    return wallet.balance_minutes if wallet else 0


async def add_minutes(
    db: AsyncSession,
    student_id: uuid.UUID,
    course_id: uuid.UUID,
    minutes: int,
    note: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Credit purchased minutes, creating the wallet on first use.

    The wallet row is created with ON CONFLICT DO NOTHING so concurrent first
    purchases converge on a single row.
    """
    if minutes <= 0:
        raise ValidationError("Minutes to add must be positive", {"minutes": minutes})

    insert = _dialect_insert(db)
    await db.execute(
        insert(HourWallet)
        .values(
            id=uuid.uuid4(),
            student_id=student_id,
            course_id=course_id,
            purchased_minutes=0,
            consumed_minutes=0,
            status="active",
        )
        .on_conflict_do_nothing(index_elements=["student_id", "course_id"])
    )

    result = await db.execute(
        update(HourWallet)
        .where(
            HourWallet.student_id == student_id,
            HourWallet.course_id == course_id,
        )
        .values(purchased_minutes=HourWallet.purchased_minutes + minutes)
        .returning(HourWallet.id, HourWallet.purchased_minutes, HourWallet.consumed_minutes)
        .execution_options(synchronize_session=False)
    )
    row = result.one()
    _record(db, row.id, TransactionKind.PURCHASE, minutes, note=note)

    logger.info(
        f"Added {minutes} minutes to wallet {row.id} "
        f"(student={student_id}, course={course_id}), "
        f"balance={row.purchased_minutes - row.consumed_minutes}"
    )
    return _row_summary(row)


async def deduct_minutes(
    db: AsyncSession,
    student_id: uuid.UUID,
    course_id: uuid.UUID,
    minutes: int,
    kind: str = TransactionKind.NO_SHOW_CHARGE,
    session_id: Optional[uuid.UUID] = None,
    note: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Increment consumed minutes without a balance cap.

    Returns None (no-op) when the student has no wallet for the course.
    The balance may go negative; a later purchase settles the debt.
    Callers needing a hard cap use reserve_minutes().
    """
    result = await db.execute(
        update(HourWallet)
        .where(
            HourWallet.student_id == student_id,
            HourWallet.course_id == course_id,
        )
        .values(consumed_minutes=HourWallet.consumed_minutes + minutes)
        .returning(HourWallet.id, HourWallet.purchased_minutes, HourWallet.consumed_minutes)
        .execution_options(synchronize_session=False)
    )
    row = result.first()
    if row is None:
        logger.warning(
            f"No wallet for student={student_id} course={course_id}; "
            f"{minutes} minute {kind} not recorded"
        )
        return None

    _record(db, row.id, kind, minutes, session_id=session_id, note=note)
    logger.info(
        f"Deducted {minutes} minutes ({kind}) from wallet {row.id}, "
        f"balance={row.purchased_minutes - row.consumed_minutes}"
    )
    if row.consumed_minutes > row.purchased_minutes:
        logger.warning(
            f"Wallet {row.id} overdrawn by {row.consumed_minutes - row.purchased_minutes} "
            f"minutes after {kind}"
        )
    return _row_summary(row)


async def reserve_minutes(
    db: AsyncSession,
    student_id: uuid.UUID,
    course_id: uuid.UUID,
    minutes: int,
    session_id: Optional[uuid.UUID] = None,
) -> Dict[str, Any]:
    """
    Deduct minutes only if the balance covers them.

    Check and deduction are one conditional UPDATE; raises
    InsufficientFundsError with the shortfall otherwise.
    """
    result = await db.execute(
        update(HourWallet)
        .where(
            HourWallet.student_id == student_id,
            HourWallet.course_id == course_id,
            HourWallet.purchased_minutes - HourWallet.consumed_minutes >= minutes,
        )
        .values(consumed_minutes=HourWallet.consumed_minutes + minutes)
        .returning(HourWallet.id, HourWallet.purchased_minutes, HourWallet.consumed_minutes)
        .execution_options(synchronize_session=False)
    )
    row = result.first()
    if row is None:
        available = await balance(db, student_id, course_id)
        logger.warning(
            f"Reservation refused for student={student_id} course={course_id}: "
            f"required={minutes}, available={available}"
        )
        raise InsufficientFundsError(required=minutes, available=max(available, 0))

    _record(db, row.id, TransactionKind.RESERVATION, minutes, session_id=session_id)
    logger.info(
        f"Reserved {minutes} minutes from wallet {row.id} for session {session_id}, "
        f"balance={row.purchased_minutes - row.consumed_minutes}"
    )
    return _row_summary(row)


async def refund_minutes(
    db: AsyncSession,
    student_id: uuid.UUID,
    course_id: uuid.UUID,
    minutes: int,
    session_id: Optional[uuid.UUID] = None,
    note: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Return previously consumed minutes (correction of an unused reservation)"""
    if minutes <= 0:
        return None

    result = await db.execute(
        update(HourWallet)
        .where(
            HourWallet.student_id == student_id,
            HourWallet.course_id == course_id,
            HourWallet.consumed_minutes >= minutes,
        )
        .values(consumed_minutes=HourWallet.consumed_minutes - minutes)
        .returning(HourWallet.id, HourWallet.purchased_minutes, HourWallet.consumed_minutes)
        .execution_options(synchronize_session=False)
    )
    row = result.first()
    if row is None:
        logger.warning(
            f"Refund of {minutes} minutes skipped for student={student_id} "
            f"course={course_id}: wallet missing or under-consumed"
        )
        return None

    _record(db, row.id, TransactionKind.REFUND, minutes, session_id=session_id, note=note)
    logger.info(
        f"Refunded {minutes} minutes to wallet {row.id} for session {session_id}, "
        f"balance={row.purchased_minutes - row.consumed_minutes}"
    )
    return _row_summary(row)


def _row_summary(row) -> Dict[str, Any]:
    return {
        "wallet_id": row.id,
        "purchased_minutes": row.purchased_minutes,
        "consumed_minutes": row.consumed_minutes,
        "balance_minutes": row.purchased_minutes - row.consumed_minutes,
    }


def validate_allocation(total_hours: float, allocations: Dict[Any, float]) -> None:
    """
    Check that per-course hours sum to the stated total.

    Raises:
        ValidationError: if a part is not positive or the sum drifts by
            0.01 hour or more
    """
    if not allocations:
        raise ValidationError("Allocation must name at least one course")

    for course_id, hours in allocations.items():
        if hours <= 0:
            raise ValidationError(
                "Allocated hours must be positive",
                {"course_id": str(course_id), "hours": hours},
            )

    allocated = sum(allocations.values())
    if abs(allocated - total_hours) >= ALLOCATION_TOLERANCE_HOURS:
        raise ValidationError(
            f"Allocated hours ({allocated:.2f}) must equal the total ({total_hours:.2f})",
            {"total_hours": total_hours, "allocated_hours": round(allocated, 2)},
        )


class WalletLedger:
    """Administrative wallet operations, each in its own transaction"""

    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def get_wallet(self, wallet_id: uuid.UUID) -> HourWallet:
        async with self.session_factory() as db:
            wallet = await db.get(HourWallet, wallet_id)
            if wallet is None:
                raise NotFoundError(f"Wallet {wallet_id} not found")
            return wallet

    async def list_wallets(self, student_id: Optional[uuid.UUID] = None) -> List[HourWallet]:
        async with self.session_factory() as db:
            query = select(HourWallet).order_by(HourWallet.created_at.desc())
            if student_id is not None:
                query = query.where(HourWallet.student_id == student_id)
            result = await db.execute(query)
            return list(result.scalars().all())

    async def list_transactions(self, wallet_id: uuid.UUID) -> List[WalletTransaction]:
        async with self.session_factory() as db:
            if await db.get(HourWallet, wallet_id) is None:
                raise NotFoundError(f"Wallet {wallet_id} not found")
            result = await db.execute(
                select(WalletTransaction)
                .where(WalletTransaction.wallet_id == wallet_id)
                .order_by(WalletTransaction.created_at, WalletTransaction.id)
            )
            return list(result.scalars().all())

    async def add_minutes(
        self,
        student_id: uuid.UUID,
        course_id: uuid.UUID,
        minutes: int,
        note: Optional[str] = None,
    ) -> HourWallet:
        if minutes < MIN_ADD_MINUTES or minutes > MAX_ADD_MINUTES:
            raise ValidationError(
                f"Minutes to add must be between {MIN_ADD_MINUTES} and {MAX_ADD_MINUTES}",
                {"minutes": minutes},
            )

        async with self.session_factory() as db:
            async with db.begin():
                await self._require_student_and_course(db, student_id, course_id)
                summary = await add_minutes(db, student_id, course_id, minutes, note=note)
            return await db.get(HourWallet, summary["wallet_id"], populate_existing=True)

    async def allocate(
        self,
        student_id: uuid.UUID,
        total_hours: float,
        allocations: Dict[uuid.UUID, float],
        note: Optional[str] = None,
    ) -> List[HourWallet]:
        """
        Split a purchased block of hours across several course wallets.

        The parts must sum to total_hours (within 0.01 hour); all credits
        commit together.
        """
        validate_allocation(total_hours, allocations)

        wallet_ids = []
        async with self.session_factory() as db:
            async with db.begin():
                for course_id, hours in allocations.items():
                    await self._require_student_and_course(db, student_id, course_id)
                    minutes = int(round(hours * 60))
                    summary = await add_minutes(db, student_id, course_id, minutes, note=note)
                    wallet_ids.append(summary["wallet_id"])

            logger.info(
                f"Allocated {total_hours:.2f} hours across {len(allocations)} courses "
                f"for student {student_id}"
            )
            return [
                await db.get(HourWallet, wallet_id, populate_existing=True)
                for wallet_id in wallet_ids
            ]

    async def _require_student_and_course(
        self,
        db: AsyncSession,
        student_id: uuid.UUID,
        course_id: uuid.UUID,
    ) -> None:
        if await db.get(User, student_id) is None:
            raise NotFoundError(f"Student {student_id} not found")
        if await db.get(Course, course_id) is None:
            raise NotFoundError(f"Course {course_id} not found")


# Global ledger instance
_ledger: Optional[WalletLedger] = None


def get_wallet_ledger() -> WalletLedger:
    """Get or create global WalletLedger instance."""
    global _ledger
    if _ledger is None:
        _ledger = WalletLedger()
    return _ledger
