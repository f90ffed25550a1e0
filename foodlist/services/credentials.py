"""
Persisted credential storage - the fallback token source and the last thing a purge clears.
"""

from abc import ABC, abstractmethod

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from foodlist.datastore.repositories import CredentialRepository
from foodlist.services.types import AuthUser, Session


class CredentialStore(ABC):
    """Local persisted copy of the current session's tokens."""

    @abstractmethod
    async def get_session(self) -> Session | None:
        """Return the session saved by this or an earlier run, if any."""
        ...

    @abstractmethod
    async def save_session(self, session: Session) -> None:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    async def get_token(self) -> str | None:
        """Return the persisted access token, if any."""
        session = await self.get_session()
        return session.access_token if session else None


class MemoryCredentialStore(CredentialStore):
    """Process-local store, used when no database is configured."""

    def __init__(self, session: Session | None = None):
        self._session = session

    async def get_session(self) -> Session | None:
        return self._session

    async def save_session(self, session: Session) -> None:
        self._session = session

    async def clear(self) -> None:
        self._session = None


class SqlCredentialStore(CredentialStore):
    """Credential store backed by the local SQLite database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_session(self) -> Session | None:
        async with self._session_factory() as db:
            stored = await CredentialRepository(db).get()
            if stored is None:
                return None
            return Session(
                access_token=stored.access_token,
                refresh_token=stored.refresh_token,
                expires_at=stored.expires_at,
                subject_id=stored.subject_id,
                user=AuthUser(id=stored.subject_id) if stored.subject_id else None,
            )

    async def get_token(self) -> str | None:
        async with self._session_factory() as db:
            stored = await CredentialRepository(db).get()
            return stored.access_token if stored else None

    async def save_session(self, session: Session) -> None:
        async with self._session_factory() as db:
            await CredentialRepository(db).upsert(session)
            await db.commit()
        logger.debug(f"Persisted credentials for subject {session.subject_id}")

    async def clear(self) -> None:
        async with self._session_factory() as db:
            await CredentialRepository(db).delete_all()
            await db.commit()
