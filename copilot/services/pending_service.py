"""
Pending records - signups awaiting their profile, reset secrets, OTPs

One live record per (kind, email). Asking again overwrites the record in
place and renews its expiry; expired records read as absent and are purged
by the scheduler.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from copilot.config import settings
from copilot.db.models import PendingRecord, PendingKind

logger = logging.getLogger(__name__)


def _expiry() -> datetime:
    return datetime.utcnow() + timedelta(seconds=settings.pending_ttl_seconds)


async def upsert_pending(
    db: AsyncSession,
    kind: PendingKind,
    email: str,
    *,
    user_id: Optional[str] = None,
    password_hash: Optional[str] = None,
    secret: Optional[str] = None,
    manual: bool = True,
) -> PendingRecord:
    """Create or overwrite the (kind, email) record. Last write wins."""
    fields = dict(
        user_id=user_id,
        password_hash=password_hash,
        secret=secret,
        manual=manual,
        failed_attempts=0,
        created_at=datetime.utcnow(),
        expires_at=_expiry(),
    )

    record = await _find(db, kind, email)
    if record is None:
        record = PendingRecord(kind=kind.value, email=email, **fields)
        db.add(record)
        try:
            await db.commit()
            return record
        except IntegrityError:
            # Lost a race with a concurrent request for the same email
            await db.rollback()
            record = await _find(db, kind, email)
            if record is None:
                raise

    for key, value in fields.items():
        setattr(record, key, value)
    await db.commit()
    return record


async def get_pending(
    db: AsyncSession,
    kind: PendingKind,
    email: Optional[str] = None,
    record_id: Optional[str] = None,
) -> Optional[PendingRecord]:
    """Live record by email or by id; expired records are treated as absent."""
    query = select(PendingRecord).where(
        PendingRecord.kind == kind.value,
        PendingRecord.expires_at > datetime.utcnow(),
    )
    if email is not None:
        query = query.where(PendingRecord.email == email)
    if record_id is not None:
        query = query.where(PendingRecord.id == record_id)

    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_reset_secret(
    db: AsyncSession,
    user_id: str,
    secret: str,
) -> Optional[PendingRecord]:
    result = await db.execute(
        select(PendingRecord).where(
            PendingRecord.kind == PendingKind.RESET.value,
            PendingRecord.user_id == user_id,
            PendingRecord.secret == secret,
            PendingRecord.expires_at > datetime.utcnow(),
        )
    )
    return result.scalar_one_or_none()


async def consume_pending(db: AsyncSession, record: PendingRecord) -> None:
    """Delete a record once its flow is finished. Caller commits."""
    await db.delete(record)


async def purge_expired(db: AsyncSession) -> int:
    """Delete every expired record and return how many were removed."""
    result = await db.execute(
        delete(PendingRecord).where(PendingRecord.expires_at <= datetime.utcnow())
    )
    await db.commit()
    if result.rowcount:
        logger.info(f"Purged {result.rowcount} expired pending record(s)")
    return result.rowcount or 0


async def _find(db: AsyncSession, kind: PendingKind, email: str) -> Optional[PendingRecord]:
    # Expired rows still occupy the (kind, email) slot until purged
    result = await db.execute(
        select(PendingRecord).where(
            PendingRecord.kind == kind.value,
            PendingRecord.email == email,
        )
    )
    return result.scalar_one_or_none()
