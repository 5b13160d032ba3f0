"""
Editable tree view of a JSON value, used by the interactive body editor.

Nodes are addressed by index paths (``(0, 2)`` = third child of the first
child) rather than dotted key strings, so keys containing dots or brackets
need no escaping.
"""

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class TreeNode:
    key: str | int | None
    value: Any = None
    children: list["TreeNode"] | None = None
    is_list: bool = False

    @property
    def is_container(self) -> bool:
        return self.children is not None

    @classmethod
    def from_value(cls, value: Any, key: str | int | None = None) -> "TreeNode":
        if isinstance(value, dict):
            return cls(key, children=[cls.from_value(v, k) for k, v in value.items()])
        if isinstance(value, list):
            return cls(key, children=[cls.from_value(v, i) for i, v in enumerate(value)], is_list=True)
        return cls(key, value=value)

    def to_value(self) -> Any:
        if not self.is_container:
            return self.value
        if self.is_list:
            return [c.to_value() for c in self.children]
        return {str(c.key): c.to_value() for c in self.children}

    def node_at(self, path: tuple[int, ...]) -> "TreeNode":
        node = self
        for index in path:
            if not node.is_container or not 0 <= index < len(node.children):
                raise IndexError(f"No node at {path}")
            node = node.children[index]
        return node

    def set_value(self, path: tuple[int, ...], value: Any) -> None:
        """Replace the node at ``path`` (keeping its key) with ``value``."""
        node = self.node_at(path)
        replacement = TreeNode.from_value(value, node.key)
        node.value, node.children, node.is_list = replacement.value, replacement.children, replacement.is_list

    def remove(self, path: tuple[int, ...]) -> None:
        if not path:
            raise IndexError("Cannot remove the root")
        parent = self.node_at(path[:-1])
        parent.node_at((path[-1],))
        del parent.children[path[-1]]
        if parent.is_list:
            for i, child in enumerate(parent.children):
                child.key = i

    def add_child(self, path: tuple[int, ...], key: str | None, value: Any) -> tuple[int, ...]:
        """Add ``key: value`` under the container at ``path``; returns the new path."""
        parent = self.node_at(path)
        if not parent.is_container:
            raise TypeError("Can only add children to objects and arrays")
        if parent.is_list:
            parent.children.append(TreeNode.from_value(value, len(parent.children)))
            return path + (len(parent.children) - 1,)
        for i, child in enumerate(parent.children):
            if child.key == key:
                self.set_value(path + (i,), value)
                return path + (i,)
        parent.children.append(TreeNode.from_value(value, key))
        return path + (len(parent.children) - 1,)

    def rows(self, max_width: int = 40) -> list["TreeRow"]:
        """Flattened depth-first listing of every node below the root."""
        out: list[TreeRow] = []

        def walk(node: TreeNode, path: tuple[int, ...], depth: int) -> None:
            for i, child in enumerate(node.children or []):
                child_path = path + (i,)
                if child.is_container:
                    out.append(TreeRow(depth, f"{child.key}:", child_path, True))
                    walk(child, child_path, depth + 1)
                else:
                    text = json.dumps(child.value, ensure_ascii=False)
                    if len(text) > max_width:
                        text = text[: max_width - 3] + "..."
                    out.append(TreeRow(depth, f"{child.key}: {text}", child_path, False))

        walk(self, (), 0)
        return out


@dataclass(frozen=True)
class TreeRow:
    depth: int
    label: str
    path: tuple[int, ...] = field(default_factory=tuple)
    is_container: bool = False

    def indented(self) -> str:
        return "  " * self.depth + self.label


def parse_input(text: str) -> Any:
    """Interpret user input as JSON when it parses, else keep the raw string."""
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return text
