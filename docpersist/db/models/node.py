from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKeyConstraint, Index
from sqlalchemy.sql import func

from docpersist.core.db import Base


class ContentNode(Base):
    __tablename__ = "content_nodes"

    page_id = Column(String(255), primary_key=True)
    id = Column(String(64), primary_key=True)
    type = Column(String(100), nullable=False)
    content = Column(JSON, nullable=False)
    parent_id = Column(String(64), nullable=True)
    order = Column(Integer, nullable=False)
    last_synced_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_content_nodes_page_order", "page_id", "parent_id", "order"),
    )

    def __repr__(self):
        return f"<ContentNode(page_id={self.page_id}, id={self.id}, type={self.type}, order={self.order})>"


class NodeVersion(Base):
    __tablename__ = "node_versions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    page_id = Column(String(255), nullable=False)
    node_id = Column(String(64), nullable=False)
    content = Column(JSON, nullable=False)
    changed_by = Column(String(255), nullable=False)
    recorded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        ForeignKeyConstraint(
            ["page_id", "node_id"],
            ["content_nodes.page_id", "content_nodes.id"],
            ondelete="CASCADE"
        ),
        Index("ix_node_versions_node", "page_id", "node_id"),
    )
