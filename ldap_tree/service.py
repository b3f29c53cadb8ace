from __future__ import annotations

import enum
import warnings
from collections.abc import Callable
from functools import wraps
from typing import TYPE_CHECKING, Any

import ldap
import ldap.schema
from ldap_filter import Filter  # type: ignore[reportUnknownVariableType]
from ldap_filter.parser import ParseError

from .attributes import AttributeRecord, marshal_attributes
from .dn import DN
from .exceptions import (
    ConfigurationError,
    InvalidFilterError,
    LogicError,
    SizeLimitExceeded,
)
from .logging import logger
from .node import DirectoryNode, dn_sort_key, is_parent_node
from .tree import Tree

if TYPE_CHECKING:
    from .connection import LDAPConnection
    from .types import LDAPRecord, LDAPSearchResult

#: The filter that matches every entry
ALL_OBJECTS_FILTER: str = "(objectClass=*)"
#: If an error message contains this, we treat the error as a read timeout
TIMEOUT_MESSAGE: str = "read timed out"


class Scope(enum.IntEnum):
    """
    Search scopes, as ``python-ldap`` constants.
    """

    BASE = ldap.SCOPE_BASE  # type: ignore[attr-defined]
    ONELEVEL = ldap.SCOPE_ONELEVEL  # type: ignore[attr-defined]
    SUBTREE = ldap.SCOPE_SUBTREE  # type: ignore[attr-defined]


# ====================================
# Error classification
# ====================================


def error_message(exc: ldap.LDAPError) -> str:
    """
    Return a readable message for a ``python-ldap`` exception.  These usually
    carry a dict with ``desc`` and (sometimes) ``info`` keys as their first
    argument.
    """
    details = exc.args[0] if exc.args else None
    if isinstance(details, dict):
        parts = [str(details.get(key, "")).strip() for key in ("desc", "info")]
        message = ": ".join(part for part in parts if part)
        if message:
            return message
    return str(exc)


def is_transient(exc: ldap.LDAPError) -> bool:
    """
    Return ``True`` if ``exc`` is a read timeout, which we recover from by
    reconnecting and trying again.

    ``python-ldap`` raises :py:exc:`ldap.TIMEOUT` for these, so we check for
    that first.  Other client libraries and proxies report the same thing
    only in the message text, so we also look for :py:data:`TIMEOUT_MESSAGE`
    there.
    """
    if isinstance(exc, ldap.TIMEOUT):  # type: ignore[attr-defined]
        return True
    return TIMEOUT_MESSAGE in error_message(exc).lower()


# ====================================
# Decorators
# ====================================


def with_session(func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Run ``func`` inside a fresh session from ``self.connection``, passing the
    session as the first argument after ``self``.  The session is always
    closed on the way out.

    If ``func`` raises a transient error, mark the connection for reconnect
    and run the whole call again.  The connection's reconnect limit is what
    keeps this from going on forever.  Any other ``python-ldap`` error is
    re-raised as :py:exc:`LogicError`.
    """

    @wraps(func)
    def inner(self: DirectoryService, *args, **kwargs) -> Any:
        with self.connection.session() as session:
            try:
                return func(self, session, *args, **kwargs)
            except ldap.LDAPError as exc:
                if not is_transient(exc):
                    msg = f"{func.__name__} failed: {error_message(exc)}"
                    raise LogicError(msg) from exc
                logger.warning(
                    "%s hit a transient error, reconnecting: %s",
                    func.__name__,
                    error_message(exc),
                )
                self.connection.mark_for_reconnect()
                return inner(self, *args, **kwargs)

    return inner


# ====================================
# Service
# ====================================


class DirectoryService:
    """
    Reads entries from an LDAP server and assembles them into
    :py:class:`Tree` objects.

    Every public method takes either a :py:class:`DN` or a DN string, and
    opens and closes its own session on :py:attr:`connection`.

    There are two ways to build a tree:

    * :py:meth:`build_tree_fast` does one subtree search and links the
      results together locally.  Servers cap the number of results a single
      search returns, so if we get :py:attr:`tree_size_threshold` or more
      results back (or the server tells us it hit its size limit), we fall
      back to :py:meth:`build_tree_slow`.
    * :py:meth:`build_tree_slow` does a one-level search for every entry in
      the tree.  It's one round trip per entry, but always complete.

    Example:
        >>> conn = LDAPConnection("ldap.example.com")
        >>> with DirectoryService(conn) as service:
        ...     tree = service.build_tree_fast("ou=people,dc=example,dc=com")
        ...     [str(node.dn) for node in tree]

    Args:
        connection: the connection to use

    Keyword Args:
        tree_size_threshold: if a subtree search returns this many results or
            more, :py:meth:`build_tree_fast` uses :py:meth:`build_tree_slow`
            instead

    Raises:
        ConfigurationError: ``connection`` was ``None`` or
            ``tree_size_threshold`` was not positive

    """

    #: Default for the number of results at which we stop trusting a single
    #: subtree search.  This matches the default size limit of Active
    #: Directory and many other servers.
    tree_size_threshold: int = 2000

    def __init__(
        self, connection: LDAPConnection, tree_size_threshold: int | None = None
    ) -> None:
        if connection is None:
            msg = "connection must not be None"
            raise ConfigurationError(msg)
        #: The connection we use for all our operations
        self.connection: LDAPConnection = connection
        if tree_size_threshold is not None:
            if tree_size_threshold <= 0:
                msg = f"tree_size_threshold must be positive, got {tree_size_threshold}"
                raise ConfigurationError(msg)
            self.tree_size_threshold = tree_size_threshold

    def close(self) -> None:
        self.connection.disconnect()

    def __enter__(self) -> DirectoryService:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # Entries

    def get_attributes(self, dn: DN | str) -> AttributeRecord:
        """
        Return the attributes of the entry at ``dn``.

        Args:
            dn: the DN of the entry

        Raises:
            InvalidNameError: ``dn`` is not a valid DN
            LogicError: there is no such entry, or the server failed us

        Returns:
            The entry's attributes.

        """
        return self._read_entry(DN.coerce(dn))

    def get_children(self, dn: DN | str) -> list[DirectoryNode]:
        """
        Return the entries directly under ``dn``.
        """
        records = self.search_onelevel(dn, ALL_OBJECTS_FILTER)
        return [self.to_node(record) for record in records]

    def get_roots(self) -> list[DirectoryNode]:
        """
        Return an entry for each naming context the server advertises in its
        root DSE.
        """
        contexts = self._naming_contexts()
        logger.debug("Naming contexts: %s", contexts)
        return [self.to_node(context) for context in contexts]

    def to_node(self, entry: LDAPRecord | DN | str) -> DirectoryNode:
        """
        Make a :py:class:`DirectoryNode`.

        Args:
            entry: either a ``(dn, data)`` record as returned by
                :py:meth:`search`, or the DN of an entry to fetch from the
                server

        Returns:
            The node for ``entry``.

        """
        if isinstance(entry, tuple):
            dn, data = entry
            return DirectoryNode(DN.parse(dn), marshal_attributes(data))
        dn = DN.coerce(entry)
        return DirectoryNode(dn, self.get_attributes(dn))

    # Searching

    def search(
        self,
        dn: DN | str,
        filterstr: str = ALL_OBJECTS_FILTER,
        scope: Scope | int = Scope.SUBTREE,
        attrlist: list[str] | None = None,
    ) -> LDAPSearchResult:
        """
        Search under ``dn``.  ``filterstr`` is passed to the server as-is
        once we've checked that it parses.

        Examples:
            ``(cn=abc)`` matches entries whose ``cn`` is ``abc``;
            ``(cn=abc*)`` matches those whose ``cn`` starts with ``abc``;
            ``(&(cn=abc*)(cn=*d))`` and ``(|(cn=abc*)(cn=*d))`` combine
            filters with AND and OR.

        Args:
            dn: the base of the search
            filterstr: an RFC 4515 search filter
            scope: one of :py:class:`Scope`
            attrlist: the attributes to return, or ``None`` for all of them

        Raises:
            InvalidNameError: ``dn`` is not a valid DN
            InvalidFilterError: ``filterstr`` is not a valid filter
            ConfigurationError: ``scope`` is not one of :py:class:`Scope`
            SizeLimitExceeded: the server would not return all the results
            LogicError: the server failed us

        Returns:
            A list of ``(dn, data)`` records, as ``python-ldap`` returns them.

        """
        dn = DN.coerce(dn)
        try:
            Filter.parse(filterstr)
        except ParseError as exc:
            raise InvalidFilterError(filterstr) from exc
        try:
            scope = Scope(scope)
        except ValueError as exc:
            msg = f"Unknown search scope: {scope!r}"
            raise ConfigurationError(msg) from exc
        return self._search(dn, filterstr, scope, attrlist)

    def search_onelevel(self, dn: DN | str, filterstr: str) -> LDAPSearchResult:
        """
        Search the entries directly under ``dn``.
        """
        return self.search(dn, filterstr, Scope.ONELEVEL)

    def search_subtree(self, dn: DN | str, filterstr: str) -> LDAPSearchResult:
        """
        Search ``dn`` and everything under it.
        """
        return self.search(dn, filterstr, Scope.SUBTREE)

    # Trees

    def build_tree_fast(self, dn: DN | str) -> Tree[DirectoryNode]:
        """
        Build the tree of entries rooted at ``dn`` from a single subtree
        search, with each node's children sorted by DN.

        If the search comes back with :py:attr:`tree_size_threshold` or more
        results, or the server says it hit its size limit, the results may be
        truncated, so we use :py:meth:`build_tree_slow` instead.

        Args:
            dn: the DN of the root of the tree

        Raises:
            LogicError: the search found nothing, or the results did not link
                up into exactly one tree

        Returns:
            The root of the tree.

        """
        dn = DN.coerce(dn)
        try:
            records = self.search_subtree(dn, ALL_OBJECTS_FILTER)
        except SizeLimitExceeded:
            logger.info(
                "Subtree search for %s hit the server size limit, building the tree slowly",
                dn,
            )
            return self.build_tree_slow(dn)
        if not records:
            msg = f"Subtree search for {dn} found nothing, not even {dn} itself"
            raise LogicError(msg)
        if len(records) >= self.tree_size_threshold:
            logger.info(
                "Subtree search for %s returned %d results (threshold %d), building the tree slowly",
                dn,
                len(records),
                self.tree_size_threshold,
            )
            return self.build_tree_slow(dn)
        nodes = [self.to_node(record) for record in records]
        roots = Tree.link(nodes, is_parent_node)
        if len(roots) != 1:
            msg = (
                f"Subtree search for {dn} should link up into exactly one tree, "
                f"but we got {len(roots)}: {[str(root.value.dn) for root in roots]}"
            )
            raise LogicError(msg)
        tree = roots[0]
        tree.sort_recursive(dn_sort_key)
        logger.debug("Built tree for %s from one search: %d entries", dn, len(nodes))
        return tree

    def build_tree_slow(self, dn: DN | str) -> Tree[DirectoryNode]:
        """
        Build the tree of entries rooted at ``dn`` by asking the server for
        the children of each entry in turn, with each node's children sorted
        by DN.

        Args:
            dn: the DN of the root of the tree

        Returns:
            The root of the tree.

        """
        tree = Tree(self.to_node(dn))
        self._collect_children(tree)
        logger.debug("Built tree for %s entry by entry: %d entries", tree.value.dn, tree.size())
        return tree

    def list_all_root_trees(self) -> list[Tree[DirectoryNode]]:
        """
        Build a tree with :py:meth:`build_tree_slow` for every naming context
        on the server.

        .. deprecated::
            This reads the entire directory one entry at a time.  Use
            :py:meth:`get_roots` and build the trees you actually need.
        """
        warnings.warn(
            "DirectoryService.list_all_root_trees() reads the whole directory; "
            "use get_roots() and build_tree_fast() instead",
            DeprecationWarning,
            stacklevel=2,
        )
        return [self.build_tree_slow(root.dn) for root in self.get_roots()]

    # Schema

    def get_object_classes(self, dn: DN | str) -> list[ldap.schema.ObjectClass]:
        """
        Return the schema definitions of the object classes of the entry at
        ``dn``, as read from the entry's subschema subentry.  Object classes
        the schema doesn't define are left out.

        Args:
            dn: the DN of the entry

        Raises:
            LogicError: the entry doesn't name a subschema subentry

        Returns:
            A list of :py:class:`ldap.schema.ObjectClass` objects.

        """
        dn = DN.coerce(dn)
        entry = self._read_entry(dn, ["objectClass", "subschemaSubentry"])
        subschema_dns = entry.get("subschemaSubentry")
        if not subschema_dns:
            msg = f"{dn} has no subschemaSubentry"
            raise LogicError(msg)
        schema = self._read_subschema(subschema_dns[0])
        object_classes: list[ldap.schema.ObjectClass] = []
        for name in entry.get("objectClass", []):
            object_class = schema.get_obj(ldap.schema.ObjectClass, name)
            if object_class is not None:
                object_classes.append(object_class)
        return object_classes

    # Internal implementations

    def _collect_children(self, parent: Tree[DirectoryNode]) -> None:
        children = sorted(self.get_children(parent.value.dn), key=dn_sort_key)
        for node in children:
            self._collect_children(parent.add_child(node))

    @with_session
    def _read_entry(
        self,
        session: ldap.ldapobject.LDAPObject,  # type: ignore[name-defined]
        dn: DN,
        attrlist: list[str] | None = None,
    ) -> AttributeRecord:
        logger.debug("Reading %s attrlist=%s", dn, attrlist)
        results = session.search_s(str(dn), ldap.SCOPE_BASE, ALL_OBJECTS_FILTER, attrlist)  # type: ignore[attr-defined]
        for entry_dn, data in results:
            if entry_dn is not None:
                return marshal_attributes(data)
        msg = f"Base search for {dn} returned no entry"
        raise LogicError(msg)

    @with_session
    def _search(
        self,
        session: ldap.ldapobject.LDAPObject,  # type: ignore[name-defined]
        dn: DN,
        filterstr: str,
        scope: Scope,
        attrlist: list[str] | None = None,
    ) -> LDAPSearchResult:
        logger.debug("Searching %s scope=%s filterstr=%s", dn, scope.name, filterstr)
        try:
            results = session.search_s(str(dn), scope.value, filterstr, attrlist)
        except ldap.FILTER_ERROR as exc:  # type: ignore[attr-defined]
            raise InvalidFilterError(filterstr) from exc
        except ldap.SIZELIMIT_EXCEEDED as exc:  # type: ignore[attr-defined]
            msg = f"Search under {dn} exceeded the server's size limit"
            raise SizeLimitExceeded(msg) from exc
        # Drop search references; they come back as (None, [urls])
        return [(entry_dn, data) for entry_dn, data in results if entry_dn is not None]

    @with_session
    def _naming_contexts(self, session: ldap.ldapobject.LDAPObject) -> list[str]:  # type: ignore[name-defined]
        results = session.search_s("", ldap.SCOPE_BASE, ALL_OBJECTS_FILTER, ["namingContexts"])  # type: ignore[attr-defined]
        contexts: list[str] = []
        for _, data in results:
            contexts.extend(marshal_attributes(data).get("namingContexts", []))
        return contexts

    @with_session
    def _read_subschema(
        self,
        session: ldap.ldapobject.LDAPObject,  # type: ignore[name-defined]
        subschema_dn: str,
    ) -> ldap.schema.SubSchema:
        results = session.search_s(
            subschema_dn,
            ldap.SCOPE_BASE,  # type: ignore[attr-defined]
            "(objectClass=subschema)",
            ["objectClasses", "attributeTypes"],
        )
        for entry_dn, data in results:
            if entry_dn is not None:
                return ldap.schema.SubSchema(data)
        msg = f"Could not read the subschema subentry {subschema_dn}"
        raise LogicError(msg)
