"""Декодирование состояния документа в упорядоченный список узлов.

Поддерживаются две несовместимые стратегии идентификации:
- digest: обход фрагмента "default" (Tiptap/ProseMirror), id: хеш (type, order, text);
- stable_key: плоская карта "blocks", ключи которой и есть идентификаторы узлов.
"""

import hashlib
import logging
from typing import Dict, List, Optional

from pycrdt import Doc, Map, XmlElement, XmlFragment, XmlText

from docpersist.core.exceptions import ProjectionError
from docpersist.domains.persistence.entities import NodeCandidate

logger = logging.getLogger(__name__)

CONTENT_FRAGMENT = "default"
BLOCKS_MAP = "blocks"
DEFAULT_ID_LENGTH = 16


def node_id(node_type: str, order: int, text: str, length: int = DEFAULT_ID_LENGTH) -> str:
    """Детерминированный идентификатор узла по его содержимому"""
    digest = hashlib.sha256(f"{node_type}-{order}-{text}".encode("utf-8")).hexdigest()
    return digest[:length]


def _collect_text(node) -> str:
    if isinstance(node, XmlText):
        return str(node)
    if isinstance(node, (XmlElement, XmlFragment)):
        return "".join(_collect_text(child) for child in node.children)
    return ""


def extract_nodes(doc: Doc, id_length: int = DEFAULT_ID_LENGTH) -> List[NodeCandidate]:
    """Узлы верхнего уровня фрагмента в порядке документа"""
    fragment = doc.get(CONTENT_FRAGMENT, type=XmlFragment)
    nodes: List[NodeCandidate] = []

    order = 0
    for item in fragment.children:
        if not isinstance(item, XmlElement):
            continue

        text = _collect_text(item)
        node_type = item.tag or "unknown"
        nodes.append(NodeCandidate(
            id=node_id(node_type, order, text, id_length),
            type=node_type,
            content={"text": text, "attrs": dict(item.attributes)},
            order=order,
        ))
        order += 1

    logger.debug(f"Extracted {len(nodes)} nodes from content fragment")
    return nodes


def extract_keyed_nodes(doc: Doc) -> List[NodeCandidate]:
    """Узлы из карты blocks с явными стабильными ключами"""
    blocks = doc.get(BLOCKS_MAP, type=Map)
    nodes = []
    for key, value in blocks.items():
        if not isinstance(value, dict):
            raise ProjectionError(f"Block {key} is not an object")
        nodes.append(NodeCandidate(
            id=str(key),
            type=str(value.get("type", "unknown")),
            content=value.get("content") or {},
            parent_id=value.get("parentId"),
            order=int(value.get("order", 0)),
        ))
    nodes.sort(key=lambda node: (node.order, node.id))
    return nodes


def nodes_to_document(nodes: List[NodeCandidate]) -> Doc:
    """Сборка документа с картой blocks из списка узлов"""
    doc = Doc()
    doc[BLOCKS_MAP] = blocks = Map()
    for node in nodes:
        blocks[node.id] = {
            "type": node.type,
            "content": node.content,
            "parentId": node.parent_id,
            "order": node.order,
        }
    return doc


def validate_tree(nodes: List[NodeCandidate]) -> None:
    """Проверка уникальности id, ссылок на родителей и отсутствия циклов"""
    parents: Dict[str, Optional[str]] = {}
    for node in nodes:
        if node.id in parents:
            raise ProjectionError(f"Duplicate node id {node.id}")
        parents[node.id] = node.parent_id

    for node_id_, parent_id in parents.items():
        if parent_id is not None and parent_id not in parents:
            raise ProjectionError(f"Node {node_id_} references unknown parent {parent_id}")

    for start in parents:
        seen = set()
        current: Optional[str] = start
        while current is not None:
            if current in seen:
                raise ProjectionError(f"Cycle detected at node {current}")
            seen.add(current)
            current = parents[current]


class NodeDecoder:
    """Декодер состояния в узлы с выбранной стратегией идентификации"""

    def __init__(self, engine, identity: str = "digest", id_length: int = DEFAULT_ID_LENGTH):
        if identity not in ("digest", "stable_key"):
            raise ValueError(f"Unknown node identity strategy: {identity}")
        self.engine = engine
        self.identity = identity
        self.id_length = id_length

    def decode(self, state: bytes) -> List[NodeCandidate]:
        doc = self.engine.decode(state)
        if self.identity == "stable_key":
            nodes = extract_keyed_nodes(doc)
        else:
            nodes = extract_nodes(doc, self.id_length)
        validate_tree(nodes)
        return nodes
