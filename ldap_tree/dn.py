from __future__ import annotations

from functools import total_ordering
from typing import Any

import ldap
import ldap.dn

from .exceptions import InvalidNameError

# One RDN as python-ldap gives it to us: a list of (type, value, flags)
RDN = tuple[tuple[str, str, int], ...]


@total_ordering
class DN:
    """
    A parsed LDAP Distinguished Name.

    We keep the RDNs in the order ``python-ldap`` gives them to us:
    leaf-most first, naming context last.  So for
    ``uid=fred,ou=people,dc=example,dc=com``, ``rdns[0]`` is ``uid=fred``.

    Two DNs are equal if their RDNs are equal, comparing attribute types and
    values case-insensitively and treating the ``type=value`` pairs in a
    multi-valued RDN as a set.  DNs sort root-first: all entries under
    ``dc=com`` sort together, and a parent sorts before its children.

    Example:
        >>> dn = DN.parse("uid=fred,ou=people,dc=example,dc=com")
        >>> str(dn.parent)
        'ou=people,dc=example,dc=com'
        >>> dn == DN.parse("UID=Fred,OU=People,DC=example,DC=com")
        True

    Args:
        rdns: the RDNs, leaf-most first

    Raises:
        InvalidNameError: ``rdns`` was empty

    """

    def __init__(self, rdns: list[list[tuple[str, str, int]]] | tuple[RDN, ...]) -> None:
        if not rdns:
            raise InvalidNameError("")
        self.rdns: tuple[RDN, ...] = tuple(
            tuple((attr, value, flags) for attr, value, flags in rdn) for rdn in rdns
        )
        self._key: tuple[tuple[tuple[str, str], ...], ...] = tuple(
            tuple(sorted((attr.lower(), value.lower()) for attr, value, _ in rdn))
            for rdn in self.rdns
        )

    @classmethod
    def parse(cls, dn: str) -> DN:
        """
        Parse an RFC 4514 string into a :py:class:`DN`.

        Args:
            dn: the DN string

        Raises:
            InvalidNameError: ``dn`` is empty or not a well formed DN

        Returns:
            The parsed DN.

        """
        if not dn or not dn.strip():
            raise InvalidNameError(dn)
        try:
            rdns = ldap.dn.str2dn(dn)
        except ldap.DECODING_ERROR as exc:  # type: ignore[attr-defined]
            raise InvalidNameError(dn) from exc
        if not rdns:
            raise InvalidNameError(dn)
        return cls(rdns)

    @classmethod
    def coerce(cls, dn: DN | str) -> DN:
        """
        Return ``dn`` as a :py:class:`DN`, parsing it if it is a string.
        """
        if isinstance(dn, DN):
            return dn
        return cls.parse(dn)

    @property
    def parent(self) -> DN | None:
        """
        The DN of our parent entry, or ``None`` if we are a single RDN (the
        top of a naming context).
        """
        if len(self.rdns) < 2:  # noqa: PLR2004
            return None
        return self.__class__(self.rdns[1:])

    @property
    def rdn(self) -> str:
        """
        Our leaf-most RDN as a string, e.g. ``uid=fred``.
        """
        return ldap.dn.dn2str([list(self.rdns[0])])

    def is_parent_of(self, other: DN) -> bool:
        """
        Return ``True`` if ``other`` sits directly under us.
        """
        return other.parent == self

    def __len__(self) -> int:
        return len(self.rdns)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, DN):
            return NotImplemented
        return self._key == other._key

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, DN):
            return NotImplemented
        return self._key[::-1] < other._key[::-1]

    def __hash__(self) -> int:
        return hash(self._key)

    def __str__(self) -> str:
        return ldap.dn.dn2str([list(rdn) for rdn in self.rdns])

    def __repr__(self) -> str:
        return f"DN({str(self)!r})"
