from collections.abc import Callable
from typing import Any, TypeVar

from case_insensitive_dict import CaseInsensitiveDict

# ====================================
# Types
# ====================================

# LDAP records as returned by python-ldap
LDAPData = dict[str, list[bytes]]
LDAPRecord = tuple[str, LDAPData]
LDAPSearchResult = list[LDAPRecord]

# Attribute buckets
StringValues = CaseInsensitiveDict[str, list[str]]
BinaryValues = CaseInsensitiveDict[str, list[bytes]]
OtherValues = CaseInsensitiveDict[str, list[Any]]

# Trees
T = TypeVar("T")
IsParent = Callable[[T, T], bool]
SortKey = Callable[[T], Any]
