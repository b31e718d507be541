"""
User repository.

All methods run inside the caller's transaction; nothing here commits.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models.types import utcnow
from db.models.user import User


class UserRepository:
    """Lookup and persistence for User rows."""

    def __init__(self, db: AsyncSession):
        self._db = db

    async def _one(self, stmt, for_update: bool) -> User | None:
        if for_update:
            stmt = stmt.with_for_update()
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def get_by_id(self, user_id: str, for_update: bool = False) -> User | None:
        return await self._one(select(User).where(User.id == user_id), for_update)

    async def get_by_phone(self, phone_number: str, country_code: str, for_update: bool = False) -> User | None:
        return await self._one(
            select(User).where(
                User.phone_number == phone_number,
                User.country_code == country_code,
            ),
            for_update,
        )

    async def get_by_email(self, email: str, for_update: bool = False) -> User | None:
        return await self._one(select(User).where(User.email == email.lower()), for_update)

    async def get_by_external_id(self, external_id: str, for_update: bool = False) -> User | None:
        return await self._one(select(User).where(User.external_id == external_id), for_update)

    async def phone_taken(self, phone_number: str, country_code: str, exclude_user_id: str | None = None) -> bool:
        stmt = select(User.id).where(
            User.phone_number == phone_number,
            User.country_code == country_code,
        )
        if exclude_user_id:
            stmt = stmt.where(User.id != exclude_user_id)
        return (await self._db.execute(stmt.limit(1))).first() is not None

    async def email_taken(self, email: str, exclude_user_id: str | None = None) -> bool:
        stmt = select(User.id).where(User.email == email.lower())
        if exclude_user_id:
            stmt = stmt.where(User.id != exclude_user_id)
        return (await self._db.execute(stmt.limit(1))).first() is not None

    async def create(self, **fields: Any) -> User:
        if fields.get("email"):
            fields["email"] = fields["email"].lower()
        user = User(**fields)
        self._db.add(user)
        await self._db.flush()
        return user

    def touch_last_active(self, user: User) -> None:
        user.last_active_at = utcnow()
