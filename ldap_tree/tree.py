from __future__ import annotations

import weakref
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING, Generic

from .types import T

if TYPE_CHECKING:
    from .types import IsParent, SortKey


class Tree(Generic[T]):
    """
    A node in an ordered n-ary tree.  Each node holds exactly one value, an
    ordered list of child nodes it owns, and a reference back to its parent.

    The parent reference is a :py:func:`weakref.ref`: children are owned by
    their parent through :py:attr:`children`, but a child does not keep its
    parent alive.  Hold on to the root if you want to walk back up the tree.

    Example:
        >>> root = Tree("dc=example,dc=com")
        >>> people = root.add_child("ou=people,dc=example,dc=com")
        >>> people.add_child("uid=fred,ou=people,dc=example,dc=com")
        >>> root.size()
        3
        >>> people.root is root
        True

    Args:
        value: the value for this node

    Keyword Args:
        parent: the node that owns this one, or ``None`` for a root

    """

    def __init__(self, value: T, parent: Tree[T] | None = None) -> None:
        #: The value stored on this node
        self.value: T = value
        self._children: list[Tree[T]] = []
        self._parent: weakref.ref[Tree[T]] | None = (
            weakref.ref(parent) if parent is not None else None
        )

    @classmethod
    def link(cls, items: Iterable[T], is_parent: IsParent[T]) -> list[Tree[T]]:
        """
        Wrap each value in ``items`` in a standalone :py:class:`Tree`, then
        attach nodes to each other according to ``is_parent``.  For every
        ordered pair of distinct nodes ``(a, b)``, if ``is_parent(a.value,
        b.value)`` is ``True``, ``b`` becomes a child of ``a``.

        This makes ``n * (n - 1)`` calls to ``is_parent``, so keep ``items``
        bounded.  ``is_parent`` must not have side effects.

        Note:
            More than one root may come back.  Callers that expect a single
            connected tree have to check that themselves.

        Args:
            items: the values to arrange into trees
            is_parent: ``is_parent(parent, child)`` returns ``True`` if
                ``child`` belongs directly under ``parent``

        Returns:
            Every node that ended up without a parent, in the order their
            values appeared in ``items``.

        """
        nodes = [cls(item) for item in items]
        for parent in nodes:
            for child in nodes:
                if parent is child:
                    continue
                if is_parent(parent.value, child.value):
                    parent._attach(child)
        return [node for node in nodes if node.is_root]

    def _attach(self, child: Tree[T]) -> None:
        child._parent = weakref.ref(self)
        self._children.append(child)

    # Structure

    def add_child(self, value: T) -> Tree[T]:
        """
        Create a new node holding ``value``, append it to our children and
        return it.

        Args:
            value: the value for the new child

        Returns:
            The new child node.

        """
        child = self.__class__(value, parent=self)
        self._children.append(child)
        return child

    @property
    def parent(self) -> Tree[T] | None:
        """
        The node that owns this one, or ``None`` if we are a root (or our
        parent has been garbage collected).
        """
        if self._parent is None:
            return None
        return self._parent()

    @property
    def root(self) -> Tree[T]:
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    @property
    def children(self) -> list[Tree[T]]:
        """
        A copy of our list of child nodes.
        """
        return list(self._children)

    @property
    def child_values(self) -> list[T]:
        return [child.value for child in self._children]

    @property
    def child_count(self) -> int:
        return len(self._children)

    @property
    def is_leaf(self) -> bool:
        return not self._children

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def get_child(self, index: int) -> Tree[T] | None:
        """
        Return the child at position ``index``, or ``None`` if there isn't
        one.
        """
        if 0 <= index < len(self._children):
            return self._children[index]
        return None

    def index_of_child(self, value: T) -> int:
        """
        Return the position of the first child whose value equals ``value``,
        or ``-1``.
        """
        try:
            return self.child_values.index(value)
        except ValueError:
            return -1

    # Ordering

    def sort(self, key: SortKey[T]) -> None:
        """
        Sort our direct children by ``key(child.value)``.
        """
        self._children.sort(key=lambda child: key(child.value))

    def sort_recursive(self, key: SortKey[T]) -> None:
        """
        Sort the children of every node in this subtree by
        ``key(child.value)``.  Each level is sorted independently; the sort is
        stable, so doing this twice changes nothing the second time.
        """
        self.sort(key)
        for child in self._children:
            child.sort_recursive(key)

    # Flattening

    def to_list(self) -> list[T]:
        """
        Return the values in this subtree in pre-order: this node's value
        first, then each child's subtree in child order.
        """
        return list(self)

    def size(self) -> int:
        """
        Return the number of nodes in this subtree, including this one.
        """
        return 1 + sum(child.size() for child in self._children)

    def __iter__(self) -> Iterator[T]:
        yield self.value
        for child in self._children:
            yield from child

    def __len__(self) -> int:
        return self.size()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(value={self.value!r}, children={len(self._children)})"

    def __str__(self) -> str:
        lines = [str(self.value)]
        self._render(lines, 1)
        return "\n".join(lines)

    def _render(self, lines: list[str], depth: int) -> None:
        for child in self._children:
            lines.append(f"{'    ' * depth}- {child.value}")
            child._render(lines, depth + 1)
