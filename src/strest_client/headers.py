"""Dot-addressable header storage shared by requests and responses."""

import copy
from typing import Any


class HeaderTree:
    """Nested mapping of message fields addressed by dotted paths.

    ``tree.set("txn.id", 3)`` stores ``{"txn": {"id": 3}}``. Reads of a
    missing path return ``None`` rather than raising.
    """

    SEPARATOR = "."

    def __init__(self, data: dict[str, Any] | None = None):
        self._data: dict[str, Any] = data if data is not None else {}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HeaderTree":
        """Build a tree over a deep copy of ``data``."""
        return cls(copy.deepcopy(data))

    def set(self, path: str, value: Any) -> None:
        """Assign ``value`` at ``path``, creating intermediate nodes.

        A non-mapping value sitting on an intermediate segment is replaced
        by a new node.
        """
        *parents, leaf = path.split(self.SEPARATOR)
        node = self._data
        for key in parents:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[leaf] = value

    def set_if_absent(self, path: str, value: Any) -> bool:
        """Set ``path`` only when it currently has no value.

        Returns:
            True if the value was written, False if one was already present
        """
        if self.get(path) is not None:
            return False
        self.set(path, value)
        return True

    def get(self, path: str) -> Any:
        """Return the value at ``path``, or None if any segment is missing."""
        node: Any = self._data
        for key in path.split(self.SEPARATOR):
            if not isinstance(node, dict):
                return None
            node = node.get(key)
            if node is None:
                return None
        return node

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    @property
    def data(self) -> dict[str, Any]:
        """The live storage, used by the codec for serialization."""
        return self._data

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self.get(path) is not None

    def __eq__(self, other: object) -> bool:
        if isinstance(other, HeaderTree):
            return self._data == other._data
        if isinstance(other, dict):
            return self._data == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"HeaderTree({self._data!r})"
