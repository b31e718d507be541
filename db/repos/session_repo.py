"""
Auth session repository for per-device session rows.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models.auth import AuthSession


class SessionRepository:
    """
    Repository for device sessions.

    Logout deactivates rows; only re-login on the same device deletes
    the previous row for that (user, device) pair.
    """

    def __init__(self, db: AsyncSession):
        self._db = db

    async def replace_for_device(self, user_id: str, device_id: str, **fields: Any) -> AuthSession:
        """Delete any row for (user, device) and insert a fresh one."""
        await self._db.execute(
            delete(AuthSession)
            .where(AuthSession.user_id == user_id, AuthSession.device_id == device_id)
            .execution_options(synchronize_session="fetch")
        )
        session = AuthSession(user_id=user_id, device_id=device_id, **fields)
        self._db.add(session)
        await self._db.flush()
        return session

    async def get_by_refresh_hash(
        self, token_hash: str, now: datetime, for_update: bool = True
    ) -> AuthSession | None:
        stmt = select(AuthSession).where(
            AuthSession.refresh_token_hash == token_hash,
            AuthSession.is_active.is_(True),
            AuthSession.refresh_expires_at > now,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def get_by_access_hash(self, token_hash: str, now: datetime) -> AuthSession | None:
        result = await self._db.execute(
            select(AuthSession).where(
                AuthSession.access_token_hash == token_hash,
                AuthSession.is_active.is_(True),
                AuthSession.access_expires_at > now,
            )
        )
        return result.scalar_one_or_none()

    async def get_active_for_device(self, user_id: str, device_id: str) -> AuthSession | None:
        result = await self._db.execute(
            select(AuthSession).where(
                AuthSession.user_id == user_id,
                AuthSession.device_id == device_id,
                AuthSession.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def list_active(self, user_id: str) -> list[AuthSession]:
        result = await self._db.execute(
            select(AuthSession)
            .where(AuthSession.user_id == user_id, AuthSession.is_active.is_(True))
            .order_by(AuthSession.last_used_at.desc())
        )
        return list(result.scalars())

    async def _deactivate(self, *criteria) -> int:
        result = await self._db.execute(
            update(AuthSession)
            .where(AuthSession.is_active.is_(True), *criteria)
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def deactivate_device(self, user_id: str, device_id: str) -> int:
        return await self._deactivate(AuthSession.user_id == user_id, AuthSession.device_id == device_id)

    async def deactivate_others(self, user_id: str, current_device_id: str) -> int:
        return await self._deactivate(AuthSession.user_id == user_id, AuthSession.device_id != current_device_id)

    async def deactivate_all(self, user_id: str) -> int:
        return await self._deactivate(AuthSession.user_id == user_id)
