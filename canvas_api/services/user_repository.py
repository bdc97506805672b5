"""
User storage

Routes depend on the UserRepository interface; the Postgres implementation
is the default and tests swap in an in-memory one.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..db import Database, UserModel, get_database

logger = logging.getLogger(__name__)


@dataclass
class UserRecord:
    id: str
    email: str
    password_hash: str
    plan: str = "free"
    created_at: Optional[datetime] = None
    subscription_status: Optional[str] = None


class EmailAlreadyRegisteredError(Exception):
    pass


class UserRepository(ABC):
    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def create(self, email: str, password_hash: str, plan: str = "free") -> UserRecord:
        """
        Raises:
            EmailAlreadyRegisteredError: email taken
        """


def _to_record(row: UserModel) -> UserRecord:
    return UserRecord(
        id=str(row.id),
        email=row.email,
        password_hash=row.password_hash,
        plan=row.plan,
        created_at=row.created_at,
        subscription_status=row.subscription_status,
    )


class SqlAlchemyUserRepository(UserRepository):
    def __init__(self, database: Database):
        self.database = database

    async def get_by_email(self, email: str) -> Optional[UserRecord]:
        async with self.database.session() as session:
            result = await session.execute(select(UserModel).where(UserModel.email == email))
            row = result.scalar_one_or_none()
            return _to_record(row) if row else None

    async def get_by_id(self, user_id: str) -> Optional[UserRecord]:
        try:
            key = uuid.UUID(user_id)
        except (TypeError, ValueError):
            return None
        async with self.database.session() as session:
            row = await session.get(UserModel, key)
            return _to_record(row) if row else None

    async def create(self, email: str, password_hash: str, plan: str = "free") -> UserRecord:
        row = UserModel(email=email, password_hash=password_hash, plan=plan)
        try:
            async with self.database.session() as session:
                session.add(row)
                await session.flush()
                await session.refresh(row)
                record = _to_record(row)
        except IntegrityError as e:
            logger.info(f"Duplicate registration for {email}")
            raise EmailAlreadyRegisteredError(email) from e
        return record


def get_user_repository() -> UserRepository:
    """FastAPI dependency"""
    return SqlAlchemyUserRepository(get_database())
