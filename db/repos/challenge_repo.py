"""
OTP challenge repository.

Counters and the verified flag are changed with single UPDATE
statements so concurrent redeemers cannot lose an increment.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models.auth import OTPChallenge
from db.models.types import ChallengeType


class ChallengeRepository:
    def __init__(self, db: AsyncSession):
        self._db = db

    async def create(self, **fields: Any) -> OTPChallenge:
        challenge = OTPChallenge(**fields)
        self._db.add(challenge)
        await self._db.flush()
        return challenge

    async def _first(self, stmt, for_update: bool) -> OTPChallenge | None:
        if for_update:
            stmt = stmt.with_for_update()
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def latest_for_phone(
        self,
        phone_number: str,
        country_code: str,
        challenge_type: ChallengeType,
        for_update: bool = True,
    ) -> OTPChallenge | None:
        """Most recent unverified challenge for a phone target."""
        stmt = (
            select(OTPChallenge)
            .where(
                OTPChallenge.phone_number == phone_number,
                OTPChallenge.country_code == country_code,
                OTPChallenge.challenge_type == challenge_type,
                OTPChallenge.is_verified.is_(False),
            )
            .order_by(OTPChallenge.created_at.desc())
            .limit(1)
        )
        return await self._first(stmt, for_update)

    async def latest_for_email(
        self,
        email: str,
        challenge_type: ChallengeType,
        user_id: str | None = None,
        for_update: bool = True,
    ) -> OTPChallenge | None:
        """Most recent unverified challenge for an email target."""
        stmt = select(OTPChallenge).where(
            OTPChallenge.email == email.lower(),
            OTPChallenge.challenge_type == challenge_type,
            OTPChallenge.is_verified.is_(False),
        )
        if user_id:
            stmt = stmt.where(OTPChallenge.user_id == user_id)
        stmt = stmt.order_by(OTPChallenge.created_at.desc()).limit(1)
        return await self._first(stmt, for_update)

    async def increment_attempts(self, challenge: OTPChallenge) -> int:
        await self._db.execute(
            update(OTPChallenge)
            .where(OTPChallenge.id == challenge.id)
            .values(attempts=OTPChallenge.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await self._db.flush()
        await self._db.refresh(challenge, attribute_names=["attempts"])
        return challenge.attempts

    async def mark_verified(self, challenge: OTPChallenge, verified_at: datetime, status: str | None) -> bool:
        """Compare-and-set the verified flag. False when another redeemer won."""
        result = await self._db.execute(
            update(OTPChallenge)
            .where(OTPChallenge.id == challenge.id, OTPChallenge.is_verified.is_(False))
            .values(is_verified=True, verified_at=verified_at, provider_status=status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await self._db.refresh(challenge)
        return True

    async def record_rejection(self, challenge: OTPChallenge, status: str | None, detail: dict[str, Any]) -> None:
        metadata = dict(challenge.provider_metadata or {})
        metadata["last_verify_attempt"] = detail
        challenge.provider_status = status
        challenge.provider_metadata = metadata
        await self._db.flush()
