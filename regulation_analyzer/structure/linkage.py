from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from .models import StructuralNode


def parent_path(path: str, separator: str = "/") -> Optional[str]:
    """
    Drop the last segment of a path: "1/3/A/1" -> "1/3/A".
    Returns None for a root path.
    """
    head, sep, _ = path.rpartition(separator)
    if not sep or not head:
        return None
    return head


class ParentLinkageResolver:
    """
    Second pass over one document's flattened nodes. Parents are recorded as
    indexes into the node list, so the pass can be re-run once storage ids
    exist without touching the parser.
    """

    def __init__(self, separator: str = "/"):
        self.separator = separator

    def resolve(self, nodes: Sequence[StructuralNode]) -> List[StructuralNode]:
        index_by_path: Dict[str, int] = {node.path: i for i, node in enumerate(nodes)}
        linked: List[StructuralNode] = []
        for node in nodes:
            candidate = parent_path(node.path, self.separator)
            parent = index_by_path.get(candidate) if candidate is not None else None
            linked.append(replace(node, parent=parent))
        return linked
