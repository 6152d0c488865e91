from docpersist.db.models.snapshot import DocumentSnapshot
from docpersist.db.models.node import ContentNode, NodeVersion

__all__ = [
    "DocumentSnapshot",
    "ContentNode",
    "NodeVersion"
]
