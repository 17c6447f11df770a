# mypy: disable-error-code="attr-defined"
"""
Changelog synchronization.

A sync strategy reads the directory's own change log from a resumable
position and turns each change into a
:class:`~ldapconnector.objects.SyncDelta`, delivered to a handler in changelog
order.  Tokens are opaque to callers.  The token a sync returns is the
position of the last change it processed, so passing it back resumes right
after that change.

Use :func:`choose_sync_strategy` to pick a strategy.
"""

import logging
from collections.abc import Callable
from typing import Any

from ldap.cidict import cidict
from ldap.dn import dn2str, str2dn

from ldapconnector import ldap

from .config import SYNC_STRATEGY_SUN_CHANGELOG, LdapConfiguration
from .connection import DirectoryConnection
from .exceptions import (
    ConnectorError,
    InvalidStateError,
    InvalidValueError,
    NotFoundError,
    TokenExpiredError,
)
from .objects import OperationOptions, SyncDelta, SyncToken
from .schema import ObjectClassDescriptor, SchemaTranslator
from .server_capabilities import LdapServerCapabilities

logger = logging.getLogger(__name__)

#: A sync handler gets each delta and returns ``False`` to stop.
SyncResultsHandler = Callable[[SyncDelta], Any]


class SyncStrategy:
    """
    Base class for sync strategies.

    Args:
        connection: the connection to read from; borrowed for this call only
        configuration: the connector configuration
        schema_translator: translates re-read entries into objects

    Keyword Args:
        attributes: the LDAP attributes to re-read changed entries with, or
            ``None`` for all user attributes

    """

    def __init__(
        self,
        connection: DirectoryConnection,
        configuration: LdapConfiguration,
        schema_translator: SchemaTranslator,
        attributes: list[str] | None = None,
    ) -> None:
        self.connection = connection
        self.configuration = configuration
        self.schema_translator = schema_translator
        self.attributes = attributes

    def sync(
        self,
        object_class: str,
        token: SyncToken | None,
        handler: SyncResultsHandler,
        options: OperationOptions | None = None,
    ) -> SyncToken:
        """
        Deliver every change after ``token``.

        Args:
            object_class: the generic object class to report changes for
            token: where the previous sync stopped, or ``None`` to start at the
                oldest change the directory still has
            handler: called with every delta; return ``False`` to stop

        Keyword Args:
            options: per-call options

        Raises:
            TokenExpiredError: the changelog no longer reaches back to ``token``
            InvalidValueError: ``token`` is not a token we issued

        Returns:
            The token to resume from.

        """
        raise NotImplementedError

    def get_latest_sync_token(self, object_class: str) -> SyncToken:
        """
        Return the token of the most recent change, so that a sync from it
        sees only changes made after this call.
        """
        raise NotImplementedError


class SunChangelogSyncStrategy(SyncStrategy):
    """
    Reads a draft-good-ldap-changelog style changelog (``cn=changelog`` with
    numbered ``changeLogEntry`` entries), as kept by Sun/Oracle, 389 and
    OpenDJ directories.  Tokens are change numbers.
    """

    CHANGELOG_DN: str = "cn=changelog"
    CHANGELOG_ATTRIBUTES: list[str] = [
        "changeNumber",
        "changeType",
        "targetDN",
        "targetEntryUUID",
        "targetUniqueId",
        "newRDN",
        "deleteOldRDN",
        "newSuperior",
    ]
    CHANGE_TYPES: dict[str, str] = {
        "add": SyncDelta.CREATE,
        "modify": SyncDelta.UPDATE,
        "modrdn": SyncDelta.UPDATE,
        "moddn": SyncDelta.UPDATE,
        "delete": SyncDelta.DELETE,
    }

    def _root_dse_value(self, root_dse: dict[str, list[bytes]], name: str) -> str | None:
        values = cidict(root_dse).get(name)
        if not values:
            return None
        return values[0].decode("utf-8")

    def _changelog_dn(self) -> str:
        if self.configuration.changelog_dn:
            return self.configuration.changelog_dn
        return LdapServerCapabilities.get_changelog_dn(self.connection) or self.CHANGELOG_DN

    def _change_number_range(self) -> tuple[int | None, int | None]:
        """
        Return the first and last change numbers the changelog holds, or
        ``(None, None)`` if it is empty.
        """
        root_dse = self.connection.root_dse(["firstChangeNumber", "lastChangeNumber"])
        first = self._root_dse_value(root_dse, "firstChangeNumber")
        last = self._root_dse_value(root_dse, "lastChangeNumber")
        try:
            return (
                int(first) if first is not None else None,
                int(last) if last is not None else None,
            )
        except ValueError as e:
            msg = f"The directory reported unusable change numbers {first!r}..{last!r}"
            raise InvalidStateError(msg) from e

    def _token_value(self, token: SyncToken) -> int:
        try:
            return int(token.value)
        except (TypeError, ValueError) as e:
            msg = f"Invalid sync token {token!r}: expected a change number"
            raise InvalidValueError(msg) from e

    def get_latest_sync_token(self, object_class: str) -> SyncToken:
        _, last = self._change_number_range()
        return SyncToken(last if last is not None else 0)

    def sync(
        self,
        object_class: str,
        token: SyncToken | None,
        handler: SyncResultsHandler,
        options: OperationOptions | None = None,
    ) -> SyncToken:
        first, last = self._change_number_range()
        if token is None:
            if first is None:
                start = (last or 0) + 1
            else:
                start = first
        else:
            start = self._token_value(token) + 1
            if first is not None and start < first:
                msg = (
                    f"Sync token {token.value} has expired: the changelog starts "
                    f"at change {first}"
                )
                raise TokenExpiredError(msg)
        # Nothing delivered yet: resuming from here must not skip change ``start``
        latest = SyncToken(start - 1)
        if last is None or start > last:
            logger.debug("ldapconnector.sync.no-changes start=%d", start)
            return latest

        ldap_object_class = self.schema_translator.to_ldap_object_class(object_class)
        changelog_dn = self._changelog_dn()
        batch_size = self.configuration.changelog_batch_size
        delivered = 0
        batch_start = start
        while batch_start <= last:
            batch_end = min(batch_start + batch_size - 1, last)
            for number, change in self._read_changes(changelog_dn, batch_start, batch_end):
                delta = self._to_delta(object_class, ldap_object_class, number, change)
                latest = SyncToken(number)
                if delta is None:
                    continue
                delivered += 1
                if handler(delta) is False:
                    logger.debug(
                        "ldapconnector.sync.stopped token=%s delivered=%d",
                        number,
                        delivered,
                    )
                    return latest
            batch_start = batch_end + 1
        logger.debug(
            "ldapconnector.sync.done token=%s delivered=%d", latest.value, delivered
        )
        return SyncToken(last) if latest.value < last else latest

    def _read_changes(
        self, changelog_dn: str, start: int, end: int
    ) -> list[tuple[int, dict[str, list[bytes]]]]:
        filterstr = f"(&(changeNumber>={start})(changeNumber<={end}))"
        entries = self.connection.search_s(
            changelog_dn, ldap.SCOPE_ONELEVEL, filterstr, self.CHANGELOG_ATTRIBUTES
        )
        changes = []
        for dn, attrs in entries:
            attrs = cidict(attrs)
            try:
                number = int(attrs["changeNumber"][0])
            except (KeyError, IndexError, ValueError):
                logger.warning("Skipping changelog entry %s with no usable changeNumber", dn)
                continue
            changes.append((number, attrs))
        # the directory returns changelog entries in no particular order
        return sorted(changes, key=lambda change: change[0])

    def _value(self, change: dict[str, list[bytes]], name: str) -> str | None:
        values = change.get(name)
        if not values:
            return None
        return values[0].decode("utf-8")

    def _current_dn(self, change: dict[str, list[bytes]], target_dn: str) -> str:
        new_rdn = self._value(change, "newRDN")
        if not new_rdn:
            return target_dn
        new_superior = self._value(change, "newSuperior")
        if new_superior is None:
            new_superior = dn2str(str2dn(target_dn)[1:])
        if not new_superior:
            return new_rdn
        return f"{new_rdn},{new_superior}"

    def _to_delta(
        self,
        object_class: str,
        ldap_object_class: ObjectClassDescriptor,
        number: int,
        change: dict[str, list[bytes]],
    ) -> SyncDelta | None:
        change_type = (self._value(change, "changeType") or "").lower()
        delta_type = self.CHANGE_TYPES.get(change_type)
        target_dn = self._value(change, "targetDN")
        if delta_type is None or target_dn is None:
            logger.warning(
                "Skipping change %d with unknown change type %r or no target",
                number,
                change_type,
            )
            return None
        token = SyncToken(number)

        if delta_type == SyncDelta.DELETE:
            # The entry is gone, so all we have is what the changelog recorded
            uid = target_dn
            if not self.configuration.uid_is_dn:
                uid = (
                    self._value(change, "targetEntryUUID")
                    or self._value(change, "targetUniqueId")
                    or target_dn
                )
            return SyncDelta(
                delta_type, uid, token, object_class=object_class, previous_name=target_dn
            )

        current_dn = self._current_dn(change, target_dn)
        entry = self._read_entry(current_dn, ldap_object_class)
        if entry is None:
            logger.debug(
                "ldapconnector.sync.skip change=%d dn=%s reason=gone-or-other-class",
                number,
                current_dn,
            )
            return None
        dn, attrs = entry
        obj = self.schema_translator.to_connector_object(object_class, dn, attrs)
        previous_name = target_dn if current_dn != target_dn else None
        return SyncDelta(
            delta_type,
            obj.uid,
            token,
            object_class=object_class,
            obj=obj,
            previous_name=previous_name,
        )

    def _read_entry(
        self, dn: str, ldap_object_class: ObjectClassDescriptor
    ) -> tuple[str, dict[str, list[bytes]]] | None:
        attrlist = self.attributes
        if attrlist is None:
            attrlist = ["*"]
            if not self.configuration.uid_is_dn:
                attrlist.append(self.configuration.uid_attribute)
        try:
            entries = self.connection.search_s(
                dn,
                ldap.SCOPE_BASE,
                f"(objectClass={ldap_object_class.name})",
                attrlist,
            )
        except NotFoundError:
            return None
        return entries[0] if entries else None


SYNC_STRATEGIES: dict[str, type[SyncStrategy]] = {
    SYNC_STRATEGY_SUN_CHANGELOG: SunChangelogSyncStrategy,
}


def choose_sync_strategy(
    configuration: LdapConfiguration, object_class: str
) -> type[SyncStrategy]:
    """
    Pick the sync strategy for an object class.

    Raises:
        ConnectorError: the configured strategy is unknown

    """
    try:
        return SYNC_STRATEGIES[configuration.sync_strategy]
    except KeyError as e:
        msg = (
            f"No sync strategy {configuration.sync_strategy!r} for object class "
            f"{object_class}"
        )
        raise ConnectorError(msg) from e
