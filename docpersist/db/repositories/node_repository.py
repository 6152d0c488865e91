from datetime import datetime
from typing import Dict, List, Iterable

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from docpersist.db.models.node import ContentNode, NodeVersion
from docpersist.domains.persistence.entities import NodeCandidate


class NodeRepository:
    """Репозиторий структурной проекции страницы"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_page_nodes(self, page_id: str) -> Dict[str, ContentNode]:
        """Текущие узлы страницы по идентификатору"""
        result = await self.session.execute(
            select(ContentNode).where(ContentNode.page_id == page_id)
        )
        return {node.id: node for node in result.scalars().all()}

    async def list_ordered(self, page_id: str) -> List[ContentNode]:
        result = await self.session.execute(
            select(ContentNode)
            .where(ContentNode.page_id == page_id)
            .order_by(ContentNode.order)
        )
        return list(result.scalars().all())

    async def delete_nodes(self, nodes: Iterable[ContentNode]) -> int:
        deleted = 0
        for node in nodes:
            await self.session.delete(node)
            deleted += 1
        return deleted

    def insert(self, page_id: str, candidate: NodeCandidate, synced_at: datetime) -> ContentNode:
        node = ContentNode(
            page_id=page_id,
            id=candidate.id,
            type=candidate.type,
            content=candidate.content,
            parent_id=candidate.parent_id,
            order=candidate.order,
            last_synced_at=synced_at
        )
        self.session.add(node)
        return node

    def update(self, node: ContentNode, candidate: NodeCandidate, synced_at: datetime, changed_by: str) -> NodeVersion:
        """Обновление узла с записью версии"""
        node.type = candidate.type
        node.content = candidate.content
        node.parent_id = candidate.parent_id
        node.order = candidate.order
        node.last_synced_at = synced_at

        version = NodeVersion(
            page_id=node.page_id,
            node_id=node.id,
            content=candidate.content,
            changed_by=changed_by
        )
        self.session.add(version)
        return version

    async def list_versions(self, page_id: str, node_id: str) -> List[NodeVersion]:
        result = await self.session.execute(
            select(NodeVersion)
            .where(NodeVersion.page_id == page_id, NodeVersion.node_id == node_id)
            .order_by(NodeVersion.id)
        )
        return list(result.scalars().all())

    async def count_versions(self, page_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(NodeVersion).where(NodeVersion.page_id == page_id)
        )
        return result.scalar_one()
