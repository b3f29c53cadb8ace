class LDAPTreeError(Exception):
    """
    Base class for all errors raised by ``ldap_tree``.
    """


class ConfigurationError(LDAPTreeError, ValueError):
    """
    Raised when we were given arguments we can't work with: a blank host, a
    principal without a credential (or vice versa), a malformed DN or a
    malformed search filter.  These are never retried.
    """


class InvalidNameError(ConfigurationError):
    """
    Raised when a DN string could not be parsed.

    Args:
        dn: the offending DN string

    """

    def __init__(self, dn: str) -> None:
        #: The DN string we could not parse
        self.dn: str = dn
        super().__init__(f'DN is not valid: "{dn}"')


class InvalidFilterError(ConfigurationError):
    """
    Raised when an LDAP search filter could not be parsed.

    Args:
        filterstr: the offending filter string

    """

    def __init__(self, filterstr: str) -> None:
        #: The filter string we could not parse
        self.filterstr: str = filterstr
        super().__init__(f'Bad search filter: "{filterstr}"')


class DirectoryConnectionError(LDAPTreeError):
    """
    Raised when we could not open or close a session with the directory
    server.  These are never retried.
    """


class LogicError(LDAPTreeError):
    """
    Raised for directory errors we don't know how to recover from, and for
    situations that should be impossible if both we and the directory are
    behaving, e.g. a subtree search for an existing DN that returned nothing.
    """


class SizeLimitExceeded(LogicError):
    """
    Raised when the directory server refused to return the full result set
    for a search.
    """
