"""
数据库Repository层 - 封装凭据数据访问逻辑
"""

from typing import TYPE_CHECKING

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from foodlist.datastore.models import StoredCredentialDB

if TYPE_CHECKING:
    from foodlist.services.types import Session

DEFAULT_CREDENTIAL = "default"


class CredentialRepository:
    """本地凭据Repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, name: str = DEFAULT_CREDENTIAL) -> StoredCredentialDB | None:
        """按名称获取凭据"""
        result = await self.session.execute(
            select(StoredCredentialDB).where(StoredCredentialDB.name == name)
        )
        return result.scalar_one_or_none()

    async def upsert(self, session: "Session", name: str = DEFAULT_CREDENTIAL) -> None:
        """保存或覆盖凭据"""
        existing = await self.get(name)
        if existing:
            existing.access_token = session.access_token
            existing.refresh_token = session.refresh_token
            existing.expires_at = session.expires_at
            existing.subject_id = session.subject_id
        else:
            self.session.add(
                StoredCredentialDB(
                    name=name,
                    access_token=session.access_token,
                    refresh_token=session.refresh_token,
                    expires_at=session.expires_at,
                    subject_id=session.subject_id,
                )
            )

    async def delete_all(self) -> int:
        """删除全部凭据"""
        result = await self.session.execute(delete(StoredCredentialDB))
        deleted = result.rowcount or 0
        if deleted:
            logger.debug(f"Deleted {deleted} stored credentials")
        return deleted
