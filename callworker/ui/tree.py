"""
Accessibility tree model.

Hosts (a uiautomator dump, a platform accessibility service, a test) hand the
agent a tree of :class:`UINode` values and perform clicks on its behalf.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Protocol, Tuple

Bounds = Tuple[int, int, int, int]


@dataclass
class UINode:
    text: str = ""
    description: str = ""
    resource_id: str = ""
    class_name: str = ""
    clickable: bool = False
    enabled: bool = True
    bounds: Optional[Bounds] = None
    children: List["UINode"] = field(default_factory=list)

    @property
    def center(self) -> Optional[Tuple[int, int]]:
        if self.bounds is None:
            return None
        left, top, right, bottom = self.bounds
        return (left + right) // 2, (top + bottom) // 2

    def matches(self, label: str) -> bool:
        """Case-insensitive containment on text or description (find-by-text semantics)."""
        needle = label.strip().lower()
        if not needle:
            return False
        return needle in (self.text or "").lower() or needle in (self.description or "").lower()


class UITreeHost(Protocol):
    """Capability interface: read the active window and click nodes."""

    async def snapshot(self) -> Optional[UINode]:
        """Return the root of the active window, or None when there is none."""
        ...

    async def click(self, node: UINode) -> bool:
        """Perform a click on ``node``; True when the host accepted the action."""
        ...


def iter_nodes(root: UINode) -> Iterator[UINode]:
    """Depth-first, pre-order walk."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def find_by_text(root: UINode, label: str) -> List[UINode]:
    return [node for node in iter_nodes(root) if node.matches(label)]


def format_tree(root: Optional[UINode]) -> List[str]:
    """One line per node, indented by depth, for debug logging."""
    if root is None:
        return []
    lines: List[str] = []

    def _walk(node: UINode, depth: int) -> None:
        lines.append(
            f"{'  ' * depth}- Text: '{node.text}', Desc: '{node.description}', "
            f"ID: '{node.resource_id}', Clickable: {node.clickable}"
        )
        for child in node.children:
            _walk(child, depth + 1)

    _walk(root, 0)
    return lines
