"""
APM Agent Segment Tree

Rebuilds the parent/child hierarchy of a transaction's segments from their
``id`` and ``parent_id`` fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class Node:
    segment: Any
    children: List["Node"] = field(default_factory=list)


class SegmentTree:
    """Tree of segments rooted at the transaction's root segment."""

    def __init__(self, root: Any):
        self.root = Node(root)

    def find(self, segment_id: Optional[str], node: Optional[Node] = None) -> Optional[Node]:
        """Depth-first pre-order search for ``segment_id`` below ``node``."""
        node = node if node is not None else self.root
        if node.segment.id == segment_id:
            return node

        for child in node.children:
            found = self.find(segment_id, child)
            if found is not None:
                return found
        return None

    def add(self, segment: Any) -> bool:
        """Attach ``segment`` under its parent. Orphans are dropped."""
        parent = self.find(segment.parent_id)
        if parent is None:
            logger.debug(
                "Segment parent not found, dropping",
                segment_id=segment.id,
                parent_id=segment.parent_id,
            )
            return False

        parent.children.append(Node(segment))
        return True
