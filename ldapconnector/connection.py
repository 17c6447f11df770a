# mypy: disable-error-code="attr-defined"
"""
The connection to the directory.

:class:`DirectoryConnection` wraps a python-ldap ``LDAPObject``.  It is the
only place in the package that talks to python-ldap directly, and the only
place python-ldap exceptions are caught: every wire operation is wrapped by
:func:`directory_operation`, which logs the request and response and turns
``ldap.LDAPError`` into the matching
:class:`~ldapconnector.exceptions.ConnectorError`.

A connection serves one request at a time.  Callers that share one across
threads must serialize access themselves.
"""

import logging
from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import Any

import ldapurl
from ldap.dn import dn2str, str2dn

from ldapconnector import ldap

from .config import REFERRAL_STRATEGY_FOLLOW, SEARCH_FILTER_ALL, LdapConfiguration
from .exceptions import (
    AlreadyExistsError,
    ConnectivityError,
    ConnectorError,
    DirectoryIOError,
    LimitExceededError,
    NotFoundError,
    ReferralError,
)
from .typing import AddModlist, LDAPData, ModifyModList

logger = logging.getLogger(__name__)

#: Root DSE attributes we care about.
ROOT_DSE_ATTRIBUTES: list[str] = [
    "namingContexts",
    "subschemaSubentry",
    "supportedControl",
    "supportedExtension",
    "vendorName",
    "vendorVersion",
    "forestFunctionality",
    "changelog",
    "firstChangeNumber",
    "lastChangeNumber",
]


def referral_urls(error: Exception) -> list[str]:
    """
    Dig the referral URLs out of a python-ldap ``REFERRAL`` exception.

    python-ldap puts them in the ``info`` text as ``Referral:\\n<url>...``.
    """
    details = error.args[0] if error.args else {}
    if not isinstance(details, dict):
        return []
    info = details.get("info", "")
    if isinstance(info, bytes):
        info = info.decode("utf-8", errors="replace")
    return [
        line.strip()
        for line in info.splitlines()
        if line.strip().lower().startswith(("ldap://", "ldaps://"))
    ]


def translate_ldap_error(error: Exception, operation: str) -> ConnectorError:
    """
    Map a python-ldap exception to a connector exception.

    Args:
        error: the python-ldap exception
        operation: what we were doing, for the message

    Returns:
        The exception to raise in its place.

    """
    details = error.args[0] if error.args else {}
    if isinstance(details, dict):
        desc = details.get("desc", type(error).__name__)
        info = details.get("info")
        text = f"{desc} ({info})" if info else desc
    else:
        text = str(error)
    msg = f"LDAP {operation} failed: {text}"
    if isinstance(
        error,
        (ldap.SERVER_DOWN, ldap.CONNECT_ERROR, ldap.INVALID_CREDENTIALS, ldap.TIMEOUT),
    ):
        return ConnectivityError(msg)
    if isinstance(error, ldap.NO_SUCH_OBJECT):
        return NotFoundError(msg)
    if isinstance(error, ldap.REFERRAL):
        return ReferralError(msg, urls=referral_urls(error))
    if isinstance(
        error,
        (ldap.SIZELIMIT_EXCEEDED, ldap.TIMELIMIT_EXCEEDED, ldap.ADMINLIMIT_EXCEEDED),
    ):
        return LimitExceededError(msg)
    if isinstance(error, ldap.ALREADY_EXISTS):
        return AlreadyExistsError(msg)
    return DirectoryIOError(msg)


def directory_operation(name: str) -> Callable:
    """
    Decorator for :class:`DirectoryConnection` methods that talk to the
    directory.

    Logs the request and the response at ``DEBUG``, and translates
    python-ldap exceptions with :func:`translate_ldap_error`.

    Args:
        name: the operation's name in log messages

    Returns:
        A decorator.

    """

    def real_decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, *args, **kwargs) -> Any:
            logger.debug("ldapconnector.%s.request url=%s args=%r", name, self.url, args)
            try:
                retval = func(self, *args, **kwargs)
            except ldap.NO_SUCH_OBJECT as e:
                # Routine: base lookups of DNs that don't exist end up here
                logger.debug("ldapconnector.%s.no-such-object url=%s args=%r", name, self.url, args)
                raise translate_ldap_error(e, name) from e
            except ldap.LDAPError as e:
                logger.error(
                    "ldapconnector.%s.error url=%s args=%r error=%s", name, self.url, args, e
                )
                raise translate_ldap_error(e, name) from e
            logger.debug("ldapconnector.%s.response url=%s", name, self.url)
            return retval

        return wrapper

    return real_decorator


class DirectoryConnection:
    """
    One connection to one directory server.

    Args:
        configuration: the connector configuration

    Keyword Args:
        url: connect here instead of the configured server; used to chase
            referrals

    """

    def __init__(self, configuration: LdapConfiguration, url: str | None = None) -> None:
        self.configuration = configuration
        self.url = url or configuration.server_url
        self._ldap_object: Any = None

    def _connect(self) -> Any:  # noqa: PLR0912
        """
        Create a new python-ldap connection object with our options set.

        Raises:
            OSError: a configured TLS file does not exist or is not a file

        Returns:
            An unbound ``LDAPObject``.

        """
        config = self.configuration
        ldap_object = ldap.initialize(self.url)
        if config.referral_strategy == REFERRAL_STRATEGY_FOLLOW:
            ldap_object.set_option(ldap.OPT_REFERRALS, 1)
        else:
            ldap_object.set_option(ldap.OPT_REFERRALS, 0)
        ldap_object.set_option(ldap.OPT_NETWORK_TIMEOUT, float(config.timeout))
        if config.sizelimit:
            ldap_object.set_option(ldap.OPT_SIZELIMIT, int(config.sizelimit))
        if config.tls_verify == "always":
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)
        else:
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)
        for option, path, label in (
            (ldap.OPT_X_TLS_CACERTFILE, config.tls_ca_certfile, "CA Certificate"),
            (ldap.OPT_X_TLS_CERTFILE, config.tls_certfile, "TLS Certificate"),
            (ldap.OPT_X_TLS_KEYFILE, config.tls_keyfile, "TLS Key"),
        ):
            if not path:
                continue
            if not Path(path).exists():
                msg = f"{label} file does not exist: {path}"
                raise OSError(msg)
            if not Path(path).is_file():
                msg = f"{label} file is not a file: {path}"
                raise OSError(msg)
            ldap_object.set_option(option, path)
        ldap_object.set_option(ldap.OPT_X_TLS_NEWCTX, 0)
        return ldap_object

    @directory_operation("connect")
    def connect(self) -> None:
        """
        Open the connection and bind with the configured credentials.

        Raises:
            ConnectivityError: the server can't be reached or rejected our bind

        """
        ldap_object = self._connect()
        if self.configuration.use_starttls:
            ldap_object.start_tls_s()
        self._bind(ldap_object)
        self._ldap_object = ldap_object
        logger.info("ldapconnector.connect.success url=%s", self.url)

    def _bind(self, ldap_object: Any) -> None:
        ldap_object.simple_bind_s(
            self.configuration.bind_dn or "", self.configuration.bind_password or ""
        )

    @directory_operation("bind")
    def bind(self) -> None:
        """
        Bind again on the open connection.

        Raises:
            ConnectivityError: the server rejected our bind

        """
        self._bind(self.connection)

    @directory_operation("unbind")
    def unbind(self) -> None:
        if self._ldap_object is not None:
            self._ldap_object.unbind_s()

    def close(self) -> None:
        """Unbind and drop the connection.  Safe to call more than once."""
        if self._ldap_object is None:
            return
        try:
            self.unbind()
        except ConnectorError as e:
            logger.warning("Error while closing the connection to %s: %s", self.url, e)
        finally:
            self._ldap_object = None

    @property
    def is_connected(self) -> bool:
        return self._ldap_object is not None

    @property
    def connection(self) -> Any:
        """
        The underlying python-ldap ``LDAPObject``.

        Raises:
            ConnectivityError: we are not connected

        """
        if self._ldap_object is None:
            msg = f"Not connected to {self.url}"
            raise ConnectivityError(msg)
        return self._ldap_object

    def for_referral(self, url: str) -> "DirectoryConnection":
        """
        Open a connection to the server a referral points at, binding with our
        own credentials.

        Args:
            url: the referral URL

        Raises:
            ConnectivityError: the referred server can't be reached

        Returns:
            A new connected :class:`DirectoryConnection`.

        """
        parsed = ldapurl.LDAPUrl(url)
        server_url = f"{parsed.urlscheme}://{parsed.hostport}"
        referred = DirectoryConnection(self.configuration, url=server_url)
        referred.connect()
        return referred

    # ----------------------------------
    # Searching
    # ----------------------------------

    @directory_operation("search")
    def search_s(
        self,
        base: str,
        scope: int,
        filterstr: str = SEARCH_FILTER_ALL,
        attrlist: list[str] | None = None,
    ) -> list[LDAPData]:
        """
        Search synchronously and return only the entries (no references).

        Raises:
            NotFoundError: ``base`` does not exist
            DirectoryIOError: the search failed

        """
        results = self.connection.search_s(base, scope, filterstr, attrlist)
        return [(dn, attrs) for dn, attrs in results if isinstance(attrs, dict)]

    @directory_operation("search")
    def search_ext(
        self,
        base: str,
        scope: int,
        filterstr: str = SEARCH_FILTER_ALL,
        attrlist: list[str] | None = None,
        serverctrls: list[Any] | None = None,
        sizelimit: int = 0,
    ) -> int:
        """Start an asynchronous search and return its message id."""
        return self.connection.search_ext(
            base,
            scope,
            filterstr,
            attrlist,
            serverctrls=serverctrls,
            sizelimit=sizelimit,
        )

    @directory_operation("result")
    def result3(self, msgid: int, all: int = 1, timeout: int = -1) -> tuple:  # noqa: A002
        """Fetch results of an asynchronous operation."""
        return self.connection.result3(msgid, all=all, timeout=timeout)

    def abandon(self, msgid: int) -> None:
        """
        Abandon an outstanding asynchronous operation.

        Failures are logged and otherwise ignored: abandoning is best effort
        and the server may already have finished.
        """
        try:
            self.connection.abandon(msgid)
        except ldap.LDAPError as e:
            logger.warning("Could not abandon message %s on %s: %s", msgid, self.url, e)
        else:
            logger.debug("ldapconnector.abandon url=%s msgid=%s", self.url, msgid)

    def root_dse(self, attrlist: list[str] | None = None) -> dict[str, list[bytes]]:
        """
        Read the root DSE.

        Raises:
            ConnectivityError: the server can't be reached
            DirectoryIOError: the read failed

        Returns:
            The root DSE attributes, or an empty dict if the server hides it.

        """
        results = self.search_s("", ldap.SCOPE_BASE, SEARCH_FILTER_ALL, attrlist or ROOT_DSE_ATTRIBUTES)
        if not results:
            return {}
        return results[0][1]

    def read_subschema(self) -> dict[str, list[bytes]]:
        """
        Read the subschema entry named by the root DSE's ``subschemaSubentry``.

        Raises:
            ConnectivityError: the server can't be reached
            NotFoundError: the subschema entry does not exist
            DirectoryIOError: the read failed

        """
        root_dse = self.root_dse(["subschemaSubentry"])
        subschema_dn = "cn=subschema"
        for key, values in root_dse.items():
            if key.lower() == "subschemasubentry" and values:
                subschema_dn = values[0].decode("utf-8")
        results = self.search_s(
            subschema_dn,
            ldap.SCOPE_BASE,
            "(objectClass=*)",
            ["attributeTypes", "objectClasses"],
        )
        if not results:
            msg = f"Could not read the subschema entry {subschema_dn}"
            raise NotFoundError(msg)
        return results[0][1]

    def is_alive(self) -> bool:
        """
        Check that the connection still works by reading the root DSE.
        """
        if self._ldap_object is None:
            return False
        try:
            self.root_dse(["objectClass"])
        except ConnectorError as e:
            logger.warning("ldapconnector.check-alive.failed url=%s error=%s", self.url, e)
            return False
        return True

    # ----------------------------------
    # Writing
    # ----------------------------------

    @directory_operation("add")
    def add(self, dn: str, modlist: AddModlist) -> None:
        self.connection.add_s(dn, modlist)

    @directory_operation("modify")
    def modify(self, dn: str, modlist: ModifyModList) -> None:
        """
        Apply ``modlist`` to the entry at ``dn``.  An empty modlist is not sent.

        Raises:
            NotFoundError: ``dn`` does not exist
            DirectoryIOError: the modification failed

        """
        if not modlist:
            logger.debug("ldapconnector.modify.no-changes dn=%s", dn)
            return
        self.connection.modify_s(dn, modlist)

    @directory_operation("delete")
    def delete(self, dn: str) -> None:
        self.connection.delete_s(dn)

    @directory_operation("rename")
    def rename(self, old_dn: str, new_dn: str) -> None:
        """
        Move and/or rename the entry at ``old_dn`` to ``new_dn``.

        Raises:
            NotFoundError: ``old_dn`` does not exist
            AlreadyExistsError: something already lives at ``new_dn``
            DirectoryIOError: the rename failed

        """
        old_parts = str2dn(old_dn)
        new_parts = str2dn(new_dn)
        newrdn = dn2str(new_parts[:1])
        newsuperior = None
        if dn2str(old_parts[1:]).lower() != dn2str(new_parts[1:]).lower():
            newsuperior = dn2str(new_parts[1:])
        self.connection.rename_s(old_dn, newrdn, newsuperior)

    def __repr__(self) -> str:
        return f"<DirectoryConnection url={self.url} connected={self.is_connected}>"
