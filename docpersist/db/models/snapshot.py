from sqlalchemy import Column, BigInteger, Integer, String, LargeBinary, DateTime
from sqlalchemy.sql import func

from docpersist.core.db import Base


class DocumentSnapshot(Base):
    __tablename__ = "document_snapshots"

    # порядок вставки определяется автоинкрементом
    id = Column(Integer, primary_key=True, autoincrement=True)
    page_id = Column(String(255), nullable=False, index=True)
    snapshot = Column(LargeBinary, nullable=False)
    version = Column(BigInteger, nullable=False)
    created_by = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<DocumentSnapshot(page_id={self.page_id}, version={self.version}, by={self.created_by})>"
