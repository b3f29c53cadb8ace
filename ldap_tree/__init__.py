__version__ = "1.0.0"

from .attributes import AttributeRecord, marshal_attributes
from .connection import ConnectionParameters, ConnectionState, LDAPConnection
from .dn import DN
from .exceptions import (
    ConfigurationError,
    DirectoryConnectionError,
    InvalidFilterError,
    InvalidNameError,
    LDAPTreeError,
    LogicError,
    SizeLimitExceeded,
)
from .node import DirectoryNode
from .service import DirectoryService, Scope
from .tree import Tree
from .types import LDAPData, LDAPRecord, LDAPSearchResult
