from __future__ import annotations

import enum
import re
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import ClassVar

import ldap

from .exceptions import ConfigurationError, DirectoryConnectionError, LogicError
from .logging import logger

#: Matches a leading ``ldap://`` scheme, in any case
LDAP_SCHEME_RE = re.compile(r"^ldap://", re.IGNORECASE)


class ConnectionState(enum.Enum):
    """
    The states an :py:class:`LDAPConnection` can be in.
    """

    #: No session is open
    DISCONNECTED = "disconnected"
    #: A session is open and usable
    CONNECTED = "connected"
    #: The last operation hit a transient error; the next
    #: :py:meth:`LDAPConnection.connect` will back off and reopen the session
    PENDING_RECONNECT = "pending_reconnect"


@dataclass(frozen=True)
class ConnectionParameters:
    """
    The validated, immutable parameters we use to open every session.

    Use :py:meth:`ConnectionParameters.build` rather than instantiating this
    directly; it does the validation.
    """

    uri: str  #: the LDAP URI of the server
    principal: str | None = None  #: the DN to bind as, ``None`` for anonymous
    credential: str | None = None  #: the password for :py:attr:`principal`
    timeout: float = 15.0  #: network and operation timeout, in seconds

    @property
    def anonymous(self) -> bool:
        return self.principal is None

    @classmethod
    def build(
        cls,
        host: str,
        principal: str | None = None,
        credential: str | None = None,
        timeout: float = 15.0,
    ) -> ConnectionParameters:
        """
        Validate our arguments and build a :py:class:`ConnectionParameters`.

        ``host`` may be given with or without an ``ldap://`` prefix; we
        normalize it to have one.  An ``ldaps://`` URI is kept as-is.

        Args:
            host: the hostname (optionally ``host:port``) or LDAP URI

        Keyword Args:
            principal: the DN to bind as
            credential: the password for ``principal``
            timeout: network and operation timeout, in seconds

        Raises:
            ConfigurationError: ``host`` is blank, exactly one of
                ``principal`` and ``credential`` is blank, or ``timeout`` is
                not positive

        """
        if not host or not host.strip():
            msg = "host must not be blank"
            raise ConfigurationError(msg)
        principal_blank = not principal or not principal.strip()
        credential_blank = not credential or not credential.strip()
        if principal_blank != credential_blank:
            msg = (
                "principal and credential must either both be set (simple bind) "
                "or both be blank (anonymous bind)"
            )
            raise ConfigurationError(msg)
        if timeout <= 0:
            msg = f"timeout must be positive, got {timeout}"
            raise ConfigurationError(msg)
        host = host.strip()
        if host.lower().startswith("ldaps://"):
            uri = host
        else:
            uri = "ldap://" + LDAP_SCHEME_RE.sub("", host)
        if principal_blank:
            return cls(uri=uri, timeout=timeout)
        return cls(uri=uri, principal=principal, credential=credential, timeout=timeout)


class LDAPConnection:
    """
    Owns the session to a single LDAP server.

    Sessions are meant to be short lived: every operation opens one with
    :py:meth:`connect`, uses it, and closes it with :py:meth:`disconnect`.
    :py:meth:`session` wraps that up as a context manager.

    When an operation hits a transient error (a read timeout), the caller
    should call :py:meth:`mark_for_reconnect` and try again.  The next
    :py:meth:`connect` will then sleep for :py:attr:`reconnect_delay` seconds
    before opening a fresh session.  After :py:attr:`reconnect_limit`
    consecutive reconnects without a clean :py:meth:`disconnect` in between,
    :py:meth:`connect` gives up with :py:exc:`LogicError`.

    Note:
        This class does no locking.  Don't share one instance between
        threads.

    Example:
        >>> conn = LDAPConnection("ldap.example.com", "cn=admin,dc=example,dc=com", "secret")
        >>> with conn.session() as session:
        ...     session.search_s("dc=example,dc=com", ldap.SCOPE_BASE)

    Args:
        host: the hostname (optionally ``host:port``) or LDAP URI of the server

    Keyword Args:
        principal: the DN to bind as; leave blank for an anonymous bind
        credential: the password for ``principal``
        reconnect_delay: seconds to sleep before each reconnect
        reconnect_limit: how many reconnects we allow in a row
        timeout: network and operation timeout, in seconds

    Raises:
        ConfigurationError: our arguments were invalid
        DirectoryConnectionError: we could not open a session to the server

    """

    #: Default number of seconds to sleep before reconnecting
    reconnect_delay: float = 1.0
    #: Default number of reconnects we allow in a row
    reconnect_limit: int = 10
    #: Options we set on every new session, besides the timeouts
    session_options: ClassVar[dict[int, int]] = {
        ldap.OPT_REFERRALS: 0,  # type: ignore[attr-defined]
    }

    def __init__(
        self,
        host: str,
        principal: str | None = None,
        credential: str | None = None,
        reconnect_delay: float | None = None,
        reconnect_limit: int | None = None,
        timeout: float = 15.0,
    ) -> None:
        #: The parameters we use to open every session
        self.params: ConnectionParameters = ConnectionParameters.build(
            host, principal=principal, credential=credential, timeout=timeout
        )
        if reconnect_delay is not None:
            if reconnect_delay < 0:
                msg = f"reconnect_delay must not be negative, got {reconnect_delay}"
                raise ConfigurationError(msg)
            self.reconnect_delay = reconnect_delay
        if reconnect_limit is not None:
            if reconnect_limit < 0:
                msg = f"reconnect_limit must not be negative, got {reconnect_limit}"
                raise ConfigurationError(msg)
            self.reconnect_limit = reconnect_limit
        self._session: ldap.ldapobject.LDAPObject | None = None  # type: ignore[name-defined]
        self._state: ConnectionState = ConnectionState.DISCONNECTED
        self._attempts: int = 0
        # Fail fast if the server is unreachable or we can't bind
        self.connect()
        self.disconnect()

    @property
    def uri(self) -> str:
        return self.params.uri

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        """
        The number of reconnects done since the last clean connect or
        disconnect.
        """
        return self._attempts

    def connect(self) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        Open a fresh session to the server and return it.  Any session we
        already have open is closed first.

        If :py:meth:`mark_for_reconnect` was called since the last connect,
        sleep for :py:attr:`reconnect_delay` seconds first.

        Raises:
            LogicError: we have already reconnected :py:attr:`reconnect_limit`
                times in a row
            DirectoryConnectionError: we could not open the session

        Returns:
            The bound ``python-ldap`` ``LDAPObject``.

        """
        if self._state is ConnectionState.PENDING_RECONNECT:
            if self._attempts >= self.reconnect_limit:
                logger.error(
                    "Giving up on %s after %d reconnect attempts",
                    self.uri,
                    self._attempts,
                )
                msg = (
                    f"Gave up on {self.uri} after {self._attempts} reconnect attempts"
                )
                raise LogicError(msg)
            self._attempts += 1
            logger.info(
                "Reconnecting to %s (attempt %d) in %s seconds",
                self.uri,
                self._attempts,
                self.reconnect_delay,
            )
            time.sleep(self.reconnect_delay)
            if self._session is not None:
                # The stale session may well refuse to unbind cleanly
                try:
                    self._close()
                except DirectoryConnectionError as exc:
                    logger.warning("Dropping stale session to %s: %s", self.uri, exc)
        else:
            self._attempts = 0
        if self._session is not None:
            self._close()
        self._session = self._open()
        self._state = ConnectionState.CONNECTED
        logger.debug("Connected to %s", self.uri)
        return self._session

    def disconnect(self) -> None:
        """
        Close our session, if we have one, and reset our reconnect counter.

        Raises:
            DirectoryConnectionError: the server complained while we were
                unbinding

        """
        self._attempts = 0
        self._state = ConnectionState.DISCONNECTED
        if self._session is None:
            return
        self._close()
        logger.debug("Disconnected from %s", self.uri)

    def mark_for_reconnect(self) -> None:
        """
        Note that our session hit a transient error.  Nothing is closed here;
        the next :py:meth:`connect` does the backoff and reopens the session.
        """
        self._state = ConnectionState.PENDING_RECONNECT

    @contextmanager
    def session(self) -> Iterator[ldap.ldapobject.LDAPObject]:  # type: ignore[name-defined]
        """
        Connect, yield the session, and disconnect no matter how we leave the
        ``with`` block.
        """
        conn = self.connect()
        try:
            yield conn
        finally:
            self.disconnect()

    def _open(self) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        try:
            conn = ldap.initialize(self.uri)
            for option, value in self.session_options.items():
                conn.set_option(option, value)
            conn.set_option(ldap.OPT_NETWORK_TIMEOUT, self.params.timeout)  # type: ignore[attr-defined]
            conn.set_option(ldap.OPT_TIMEOUT, self.params.timeout)  # type: ignore[attr-defined]
            conn.simple_bind_s(self.params.principal, self.params.credential)
        except ldap.LDAPError as exc:
            msg = f"Could not connect to {self.uri}: {exc}"
            raise DirectoryConnectionError(msg) from exc
        return conn

    def _close(self) -> None:
        session, self._session = self._session, None
        try:
            session.unbind_s()  # type: ignore[union-attr]
        except ldap.LDAPError as exc:
            msg = f"Could not close our session to {self.uri}: {exc}"
            raise DirectoryConnectionError(msg) from exc

    def __repr__(self) -> str:
        return f"LDAPConnection(uri={self.uri!r}, state={self._state.value})"
