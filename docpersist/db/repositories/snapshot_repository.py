from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from docpersist.db.models.snapshot import DocumentSnapshot


class SnapshotRepository:
    """Журнал снимков: только добавление и чтение"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, page_id: str, state: bytes, version: int, author: str) -> DocumentSnapshot:
        """Добавление снимка в журнал"""
        record = DocumentSnapshot(
            page_id=page_id,
            snapshot=bytes(state),
            version=version,
            created_by=author
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def most_recent(self, page_id: str) -> Optional[bytes]:
        """Последний по порядку вставки снимок страницы"""
        result = await self.session.execute(
            select(DocumentSnapshot.snapshot)
            .where(DocumentSnapshot.page_id == page_id)
            .order_by(DocumentSnapshot.id.desc())
            .limit(1)
        )
        snapshot = result.scalar_one_or_none()
        return bytes(snapshot) if snapshot is not None else None

    async def count(self, page_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(DocumentSnapshot).where(DocumentSnapshot.page_id == page_id)
        )
        return result.scalar_one()
