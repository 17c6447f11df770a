# mypy: disable-error-code="attr-defined"
"""
Search strategies.

A search strategy runs one search on one connection for one object class and
hands every matching entry, translated to a
:class:`~ldapconnector.objects.ConnectorObject`, to a handler in the order the
directory returns them.  The handler returns ``False`` to stop the search;
the strategy then abandons the request and reports
``all_results_returned=False`` instead of an error.

The referral policy is taken from the configuration once per search:

* ``follow``: libldap chases what it can; continuation references that still
  reach us are chased on a new connection, up to ``referral_hop_limit`` deep;
  going deeper fails the whole search with
  :class:`~ldapconnector.exceptions.ReferralHopLimitError`
* ``ignore``: references are logged and skipped
* ``throw``: the first reference fails the search with
  :class:`~ldapconnector.exceptions.ReferralError`

Use :func:`choose_search_strategy` to pick a strategy.
"""

import binascii
import logging
from base64 import b64decode as decode
from base64 import b64encode as encode
from collections.abc import Callable
from typing import Any

import ldapurl
from ldap.controls import SimplePagedResultsControl
from ldap_filter import Filter

from ldapconnector import ldap

from .config import (
    REFERRAL_STRATEGY_FOLLOW,
    REFERRAL_STRATEGY_IGNORE,
    SCOPE_BASE,
    SCOPE_ONE,
    SCOPE_SUB,
    SEARCH_FILTER_ALL,
    LdapConfiguration,
    get_setting,
)
from .connection import DirectoryConnection
from .exceptions import (
    InvalidValueError,
    LimitExceededError,
    ReferralError,
    ReferralHopLimitError,
)
from .objects import ConnectorObject, OperationOptions, SearchResult
from .schema import SchemaTranslator
from .server_capabilities import LdapServerCapabilities

logger = logging.getLogger(__name__)

#: A search handler gets each object and returns ``False`` to stop.
ResultsHandler = Callable[[ConnectorObject], Any]

SCOPES: dict[str, int] = {
    SCOPE_BASE: ldap.SCOPE_BASE,
    SCOPE_ONE: ldap.SCOPE_ONELEVEL,
    SCOPE_SUB: ldap.SCOPE_SUBTREE,
}


def to_ldap_scope(scope: str) -> int:
    """
    Raises:
        InvalidValueError: ``scope`` is not ``base``, ``one`` or ``sub``
    """
    try:
        return SCOPES[scope]
    except KeyError as e:
        msg = f"Invalid search scope {scope!r}: must be one of {', '.join(SCOPES)}"
        raise InvalidValueError(msg) from e


class SearchStrategy:
    """
    Base class for search strategies.

    Args:
        connection: the connection to search on; borrowed for this search only
        configuration: the connector configuration
        schema_translator: translates entries into objects
        object_class: the generic object class to tag results with
        handler: called with every result

    Keyword Args:
        options: per-call options
        hops: how many referrals were chased to get here

    """

    def __init__(
        self,
        connection: DirectoryConnection,
        configuration: LdapConfiguration,
        schema_translator: SchemaTranslator,
        object_class: str,
        handler: ResultsHandler,
        options: OperationOptions | None = None,
        hops: int = 0,
    ) -> None:
        self.connection = connection
        self.configuration = configuration
        self.schema_translator = schema_translator
        self.object_class = object_class
        self.handler = handler
        self.options = options or OperationOptions()
        self.hops = hops
        self.referral_strategy = configuration.referral_strategy
        self.delivered = 0
        #: Set when the handler stopped the search.
        self.stopped = False

    def search(
        self,
        base_dn: str,
        filter_node: Filter | None,
        scope: str,
        attributes: list[str] | None,
    ) -> SearchResult:
        """
        Run the search.

        Args:
            base_dn: where to search
            filter_node: the LDAP filter, or ``None`` to match everything in scope
            scope: ``base``, ``one`` or ``sub``
            attributes: the LDAP attributes to fetch, or ``None`` for all

        Raises:
            ReferralError: a referral was met under the ``throw`` policy
            ReferralHopLimitError: a referral chain under ``follow`` went
                deeper than ``referral_hop_limit``
            LimitExceededError: a size or time limit was hit and the caller did
                not allow partial results
            DirectoryIOError: the search failed

        Returns:
            What happened, besides the results delivered to the handler.

        """
        filterstr = filter_node.to_string() if filter_node is not None else SEARCH_FILTER_ALL
        ldap_scope = to_ldap_scope(scope)
        # policy is fixed for the whole search
        self.referral_strategy = self.configuration.referral_strategy
        logger.debug(
            "ldapconnector.search.start base=%s scope=%s filter=%s strategy=%s",
            base_dn,
            scope,
            filterstr,
            type(self).__name__,
        )
        try:
            result = self._search(base_dn, ldap_scope, filterstr, attributes)
        except ReferralError as e:
            result = self._handle_referral_error(e, ldap_scope, filterstr, attributes)
        except LimitExceededError as e:
            if not self.options.allow_partial_results:
                raise
            logger.warning(
                "Search of %s stopped at a directory limit after %d entries: %s",
                base_dn,
                self.delivered,
                e,
            )
            result = SearchResult(all_results_returned=False)
        logger.debug(
            "ldapconnector.search.done base=%s delivered=%d complete=%s",
            base_dn,
            self.delivered,
            result.all_results_returned,
        )
        return result

    def _search(
        self, base_dn: str, scope: int, filterstr: str, attributes: list[str] | None
    ) -> SearchResult:
        raise NotImplementedError

    def _deliver(self, dn: str, attrs: dict[str, list[bytes]]) -> bool:
        obj = self.schema_translator.to_connector_object(self.object_class, dn, attrs)
        self.delivered += 1
        return self.handler(obj) is not False

    def _read_results(
        self, msgid: int, scope: int, filterstr: str, attributes: list[str] | None
    ) -> tuple[bool, list[Any]]:
        """
        Consume the results of search ``msgid`` one message at a time.

        Returns:
            ``(stopped, serverctrls)``: whether the handler stopped the search,
            and the controls on the final search result.

        """
        while True:
            rtype, rdata, _, serverctrls = self.connection.result3(msgid, all=0)
            try:
                for dn, attrs in rdata or []:
                    if rtype == ldap.RES_SEARCH_REFERENCE:
                        keep_going = self._handle_reference(attrs, scope, filterstr, attributes)
                    else:
                        keep_going = self._deliver(dn, attrs)
                    if not keep_going:
                        logger.debug(
                            "ldapconnector.search.stopped delivered=%d", self.delivered
                        )
                        self.connection.abandon(msgid)
                        return True, []
            except Exception:
                self.connection.abandon(msgid)
                raise
            if rtype == ldap.RES_SEARCH_RESULT:
                return False, serverctrls or []

    def _handle_reference(
        self,
        urls: list[str | bytes],
        scope: int,
        filterstr: str,
        attributes: list[str] | None,
    ) -> bool:
        urls = [u.decode("utf-8") if isinstance(u, bytes) else u for u in urls or []]
        if self.referral_strategy == REFERRAL_STRATEGY_IGNORE:
            logger.warning("Ignoring referral %s", ", ".join(urls))
            return True
        if self.referral_strategy == REFERRAL_STRATEGY_FOLLOW:
            return self._follow(urls, scope, filterstr, attributes)
        msg = f"The directory returned a referral to {', '.join(urls)}"
        raise ReferralError(msg, urls=urls)

    def _handle_referral_error(
        self,
        error: ReferralError,
        scope: int,
        filterstr: str,
        attributes: list[str] | None,
    ) -> SearchResult:
        if isinstance(error, ReferralHopLimitError):
            raise error
        if self.referral_strategy == REFERRAL_STRATEGY_IGNORE:
            logger.warning("Ignoring referral %s", ", ".join(error.urls) or error)
            return SearchResult()
        if self.referral_strategy == REFERRAL_STRATEGY_FOLLOW and error.urls:
            if not self._follow(error.urls, scope, filterstr, attributes):
                return SearchResult(all_results_returned=False)
            return SearchResult()
        raise error

    def _follow(
        self,
        urls: list[str],
        scope: int,
        filterstr: str,
        attributes: list[str] | None,
    ) -> bool:
        """
        Chase referrals by searching the referred servers.

        Returns:
            ``False`` if the handler stopped the search.

        Raises:
            ReferralHopLimitError: following would exceed the hop limit

        """
        if self.hops + 1 > self.configuration.referral_hop_limit:
            msg = (
                f"Referral hop limit ({self.configuration.referral_hop_limit}) "
                f"reached following {', '.join(urls)}"
            )
            raise ReferralHopLimitError(msg, urls=urls)
        for url in urls:
            parsed = ldapurl.LDAPUrl(url)
            logger.info("ldapconnector.search.follow-referral url=%s hops=%d", url, self.hops + 1)
            referred = self.connection.for_referral(url)
            try:
                strategy = SimpleSearchStrategy(
                    referred,
                    self.configuration,
                    self.schema_translator,
                    self.object_class,
                    self.handler,
                    options=self.options,
                    hops=self.hops + 1,
                )
                ldap_scope = parsed.scope if parsed.scope is not None else scope
                strategy._search_with_policy(
                    parsed.dn or "", ldap_scope, filterstr, attributes
                )
                self.delivered += strategy.delivered
            finally:
                referred.close()
            if strategy.stopped:
                self.stopped = True
                return False
        return True

    def _search_with_policy(
        self,
        base_dn: str,
        ldap_scope: int,
        filterstr: str,
        attributes: list[str] | None,
    ) -> SearchResult:
        try:
            return self._search(base_dn, ldap_scope, filterstr, attributes)
        except ReferralError as e:
            return self._handle_referral_error(e, ldap_scope, filterstr, attributes)


class SimpleSearchStrategy(SearchStrategy):
    """One unpaged search, streaming every entry as it arrives."""

    def _search(
        self, base_dn: str, scope: int, filterstr: str, attributes: list[str] | None
    ) -> SearchResult:
        msgid = self.connection.search_ext(base_dn, scope, filterstr, attributes)
        self.stopped, _ = self._read_results(msgid, scope, filterstr, attributes)
        return SearchResult(all_results_returned=not self.stopped)


class PagedSearchStrategy(SearchStrategy):
    """
    Search with the RFC 2696 simple paged results control.

    If the caller asked for a page size or passed a cookie, one page is
    returned along with the cookie for the next one.  Otherwise every page is
    fetched, using the configured page size.
    """

    def _get_pctrls(self, serverctrls: list[Any]) -> list[SimplePagedResultsControl]:
        """
        Lookup an LDAP paged control object from the returned controls.
        """
        return [
            c
            for c in serverctrls
            if c.controlType == SimplePagedResultsControl.controlType
        ]

    @property
    def page_size(self) -> int:
        return (
            self.options.page_size
            or self.configuration.search_page_size
            or get_setting("DEFAULT_PAGE_SIZE", 100)
        )

    @property
    def single_page(self) -> bool:
        return (
            self.options.page_size is not None
            or self.options.paged_results_cookie is not None
        )

    def _initial_cookie(self) -> bytes:
        if not self.options.paged_results_cookie:
            return b""
        try:
            return decode(self.options.paged_results_cookie.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            msg = f"Invalid paged results cookie {self.options.paged_results_cookie!r}"
            raise InvalidValueError(msg) from e

    def _search(
        self, base_dn: str, scope: int, filterstr: str, attributes: list[str] | None
    ) -> SearchResult:
        paging = SimplePagedResultsControl(True, size=self.page_size, cookie=self._initial_cookie())  # noqa: FBT003
        while True:
            msgid = self.connection.search_ext(
                base_dn, scope, filterstr, attributes, serverctrls=[paging]
            )
            self.stopped, serverctrls = self._read_results(
                msgid, scope, filterstr, attributes
            )
            if self.stopped:
                return SearchResult(all_results_returned=False)
            paged_controls = self._get_pctrls(serverctrls)
            if not paged_controls or not paged_controls[0].cookie:
                # last page
                return SearchResult()
            paging.cookie = paged_controls[0].cookie
            if self.single_page:
                return SearchResult(
                    paged_results_cookie=encode(paging.cookie).decode("ascii")
                )


def choose_search_strategy(
    connection: DirectoryConnection,
    configuration: LdapConfiguration,
    object_class: str,
    options: OperationOptions | None = None,
) -> type[SearchStrategy]:
    """
    Pick the search strategy for a search.

    Paging is used when the caller or the configuration asks for it and the
    server advertises the paged results control.

    Args:
        connection: the connection the search will run on
        configuration: the connector configuration
        object_class: the generic object class being searched
        options: per-call options

    Returns:
        The strategy class to instantiate.

    """
    options = options or OperationOptions()
    caller_wants_paging = (
        options.page_size is not None or options.paged_results_cookie is not None
    )
    if caller_wants_paging or configuration.search_page_size:
        if LdapServerCapabilities.check_server_paging_support(connection):
            return PagedSearchStrategy
        if caller_wants_paging:
            logger.warning(
                "Paged search of %s requested, but %s does not support paged "
                "results; returning all results",
                object_class,
                connection.url,
            )
    return SimpleSearchStrategy
