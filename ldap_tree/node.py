from __future__ import annotations

from typing import Any

from .attributes import AttributeRecord
from .dn import DN
from .exceptions import LogicError


class DirectoryNode:
    """
    A single LDAP entry: its DN and its attributes.

    Two nodes are equal if their DNs are equal; attributes are not compared.

    Args:
        dn: the DN of the entry
        attributes: the attributes of the entry

    Raises:
        LogicError: ``dn`` was ``None`` or ``attributes`` was empty

    """

    def __init__(self, dn: DN, attributes: AttributeRecord) -> None:
        if dn is None:
            msg = "A DirectoryNode needs a DN"
            raise LogicError(msg)
        if not attributes:
            msg = f"A DirectoryNode needs at least one attribute: dn={dn}"
            raise LogicError(msg)
        self._dn: DN = dn
        self._parent_dn: DN | None = dn.parent
        self._attributes: AttributeRecord = attributes

    @property
    def dn(self) -> DN:
        return self._dn

    @property
    def parent_dn(self) -> DN | None:
        """
        The DN of our parent entry, worked out once when we were built.
        """
        return self._parent_dn

    @property
    def attributes(self) -> AttributeRecord:
        """
        A copy of our attributes.
        """
        return self._attributes.copy()

    def keys(self) -> list[str]:
        """
        Return the names of our attributes.
        """
        return self._attributes.names()

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, DirectoryNode):
            return NotImplemented
        return self._dn == other._dn

    def __hash__(self) -> int:
        return hash(self._dn)

    def __repr__(self) -> str:
        return f"DirectoryNode(dn={str(self._dn)!r})"

    def __str__(self) -> str:
        parts = [f"Path : {self._dn}", "Attributes :"]
        for name, values in self._attributes.strings.items():
            parts.append(f"{name}:{values}")
        return "\t".join(parts)


def is_parent_node(parent: DirectoryNode, child: DirectoryNode) -> bool:
    """
    Return ``True`` if ``child`` sits directly under ``parent`` in the
    directory.  This is the parent test we hand to :py:meth:`Tree.link`.
    """
    return child.parent_dn == parent.dn


def dn_sort_key(node: DirectoryNode) -> DN:
    """
    Sort key for ordering :py:class:`DirectoryNode` objects by DN.
    """
    return node.dn
