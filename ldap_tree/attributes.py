from __future__ import annotations

from collections.abc import Iterator
from copy import deepcopy
from typing import Any

from .types import BinaryValues, LDAPData, OtherValues, StringValues

#: Attributes whose values we never try to decode as UTF-8, even when they
#: happen to decode cleanly.
BINARY_ATTRIBUTES: frozenset[str] = frozenset(
    name.lower()
    for name in (
        "audio",
        "cACertificate",
        "certificateRevocationList",
        "crossCertificatePair",
        "jpegPhoto",
        "objectGUID",
        "objectSid",
        "photo",
        "thumbnailPhoto",
        "userCertificate",
        "userPKCS12",
        "userSMIMECertificate",
    )
)


def is_binary_attribute(name: str) -> bool:
    """
    Return ``True`` if values of attribute ``name`` should be kept as
    ``bytes``: either the name carries the ``;binary`` transfer option, or it
    is one of :py:data:`BINARY_ATTRIBUTES`.
    """
    base, *options = name.lower().split(";")
    return "binary" in options or base in BINARY_ATTRIBUTES


class AttributeRecord:
    """
    The attributes of a single LDAP entry.

    A single attribute can come back from the directory with values of
    different types, so we keep three separate buckets, all keyed by
    case-insensitive attribute name:

    * :py:attr:`strings`: ``str`` values
    * :py:attr:`binaries`: ``bytes`` values
    * :py:attr:`others`: anything else

    Every attribute name we have seen is present in the string bucket, even
    if its list there is empty.  The binary and other buckets only have names
    that actually have values of that type.

    Example:
        >>> record = AttributeRecord()
        >>> record.add_value("cn", "Alice")
        >>> record.add_value("cn", "Bob")
        >>> record.add_value("cn", b"\\x89PNG\\r\\n\\x1a")
        >>> record["CN"]
        ['Alice', 'Bob']
        >>> record.binary("cn")
        [b'\\x89PNG\\r\\n\\x1a']

    """

    def __init__(self) -> None:
        self._strings: StringValues = StringValues()
        self._binaries: BinaryValues = BinaryValues()
        self._others: OtherValues = OtherValues()

    def add_name(self, name: str) -> None:
        """
        Record that we have seen attribute ``name`` without adding a value.
        """
        if name not in self._strings:
            self._strings[name] = []

    def add_value(self, name: str, value: Any) -> None:
        """
        Append ``value`` to the bucket for its type under attribute ``name``.
        ``None`` is ignored, but ``name`` is still recorded.

        Args:
            name: the attribute name
            value: the value to add

        """
        self.add_name(name)
        if value is None:
            return
        if isinstance(value, str):
            self._strings[name].append(value)
        elif isinstance(value, (bytes, bytearray)):
            self._binaries.setdefault(name, []).append(bytes(value))
        else:
            self._others.setdefault(name, []).append(value)

    # Accessors

    def get(self, name: str, default: list[str] | None = None) -> list[str] | None:
        if name in self._strings:
            return list(self._strings[name])
        return default

    def binary(self, name: str) -> list[bytes]:
        """
        Return the ``bytes`` values of attribute ``name``, or an empty list.
        """
        if name in self._binaries:
            return list(self._binaries[name])
        return []

    def other(self, name: str) -> list[Any]:
        """
        Return the values of attribute ``name`` that were neither ``str`` nor
        ``bytes``, or an empty list.
        """
        if name in self._others:
            return list(self._others[name])
        return []

    def names(self) -> list[str]:
        return list(self._strings.keys())

    @property
    def strings(self) -> dict[str, list[str]]:
        return {name: list(values) for name, values in self._strings.items()}

    @property
    def binaries(self) -> dict[str, list[bytes]]:
        return {name: list(values) for name, values in self._binaries.items()}

    @property
    def others(self) -> dict[str, list[Any]]:
        return {name: list(values) for name, values in self._others.items()}

    def copy(self) -> AttributeRecord:
        """
        Return an independent copy of this record.
        """
        record = self.__class__()
        record._strings = StringValues(deepcopy(self.strings))
        record._binaries = BinaryValues(deepcopy(self.binaries))
        record._others = OtherValues(deepcopy(self.others))
        return record

    def __getitem__(self, name: str) -> list[str]:
        return list(self._strings[name])

    def __contains__(self, name: object) -> bool:
        return name in self._strings

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._strings)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AttributeRecord):
            return NotImplemented
        return (
            self.strings == other.strings
            and self.binaries == other.binaries
            and self.others == other.others
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.strings!r})"


def marshal_attributes(data: LDAPData | dict[str, list[Any]]) -> AttributeRecord:
    """
    Convert the attribute dict of a ``python-ldap`` search result into an
    :py:class:`AttributeRecord`.

    ``python-ldap`` hands us every value as ``bytes``.  We decode values as
    UTF-8 into the string bucket unless the attribute is a binary one (see
    :py:func:`is_binary_attribute`) or the value doesn't decode, in which
    case the raw ``bytes`` go into the binary bucket.  ``str`` values (from
    a client running with ``bytes_mode`` off, say) go straight into the
    string bucket, ``None`` values are dropped, and anything else lands in
    the other bucket.

    Args:
        data: a dict of attribute name to list of values

    Returns:
        A populated :py:class:`AttributeRecord`.

    """
    record = AttributeRecord()
    for name, values in data.items():
        record.add_name(name)
        binary = is_binary_attribute(name)
        for value in values:
            if isinstance(value, (bytes, bytearray)) and not binary:
                try:
                    value = bytes(value).decode("utf-8")  # noqa: PLW2901
                except UnicodeDecodeError:
                    pass
            record.add_value(name, value)
    return record
