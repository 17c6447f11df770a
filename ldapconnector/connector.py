# mypy: disable-error-code="attr-defined"
"""
The LDAP connector.

:class:`LdapConnector` is what the calling platform talks to.  It owns the
connection, the schema translator and the vendor rewriter, and implements the
generic operations (test, schema, search, create, update, add and remove
values, delete, sync) on top of them::

    configuration = LdapConfiguration.from_settings("corp")
    with LdapConnector(configuration) as connector:
        uid = connector.create(
            ACCOUNT,
            {NAME: "uid=alice,ou=people,dc=example,dc=com", "cn": "Alice", "sn": "A"},
        )
        connector.execute_query(ACCOUNT, EqualsFilter("cn", "Alice"), print)

An instance serves one call at a time.  Nothing here is transactional: an
update that renames an entry and then fails to modify it leaves the entry
renamed, and says so by raising
:class:`~ldapconnector.exceptions.PartialUpdateError`.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ldap.dn import is_dn
from ldap_filter import Filter

from ldapconnector import ldap

from .config import (
    SCOPE_BASE,
    SCOPE_SUB,
    SEARCH_FILTER_ALL,
    VENDOR_EDIRECTORY,
    LdapConfiguration,
)
from .connection import DirectoryConnection
from .exceptions import (
    ConnectivityError,
    ConnectorError,
    InvalidValueError,
    NotFoundError,
    PartialUpdateError,
    SchemaError,
)
from .filter_translator import LdapFilterTranslator
from .filters import EqualsFilter, QueryFilter
from .objects import (
    NAME,
    UID,
    Attribute,
    ConnectorObject,
    OperationOptions,
    Schema,
    SearchResult,
    SyncDelta,
    SyncToken,
    build_attributes,
    find_attribute,
)
from .schema import ObjectClassDescriptor, SchemaTranslator
from .search import (
    ResultsHandler,
    SimpleSearchStrategy,
    choose_search_strategy,
    to_ldap_scope,
)
from .server_capabilities import LdapServerCapabilities
from .sync import SyncResultsHandler, choose_sync_strategy
from .vendors import ModificationBatch, get_rewriter_class, normalize_dn

logger = logging.getLogger(__name__)

GenericAttributes = Mapping[str, Any] | Iterable[Attribute]


class LdapConnector:
    """
    Exposes a directory through the generic identity object operations.

    Args:
        configuration: the connector configuration

    Keyword Args:
        connection: the connection to use; one is made from ``configuration``
            if not given

    """

    def __init__(
        self,
        configuration: LdapConfiguration,
        connection: DirectoryConnection | None = None,
    ) -> None:
        self.configuration = configuration
        rewriter_class = get_rewriter_class(configuration)
        self.schema_translator = SchemaTranslator(
            configuration, syntax_overrides=rewriter_class.syntax_overrides
        )
        self.rewriter = rewriter_class(configuration, self.schema_translator)
        self.connection = connection or DirectoryConnection(configuration)

    # ----------------------------------
    # Lifecycle
    # ----------------------------------

    def connect(self) -> None:
        """
        Connect, bind and load the directory schema.

        Raises:
            ConnectivityError: the directory can't be reached or refused our bind
            SchemaError: the schema can't be used

        """
        if not self.connection.is_connected:
            self.connection.connect()
        self.refresh_schema()

    def refresh_schema(self) -> None:
        """Reload the directory schema."""
        self.schema_translator.load_schema(self.connection)

    def _ensure_connected(self) -> None:
        if not self.connection.is_connected:
            self.connect()
        elif not self.schema_translator.is_loaded:
            self.refresh_schema()

    def test(self) -> None:
        """
        Check that we can bind with the configured credentials and read the
        root DSE.  A server that looks like a different vendor from the one
        configured is logged as a warning.

        Raises:
            ConnectivityError: the directory can't be reached or refused our bind
            DirectoryIOError: the root DSE can't be read

        """
        if self.connection.is_connected:
            self.connection.bind()
        else:
            self.connection.connect()
        LdapServerCapabilities.refresh(self.connection)
        flavor = LdapServerCapabilities.detect_server_flavor(self.connection)
        if flavor != "unknown" and (flavor == VENDOR_EDIRECTORY) != self.configuration.is_edirectory:
            logger.warning(
                "Server %s looks like %s but the connector is configured for vendor %s",
                self.connection.url,
                flavor,
                self.configuration.vendor,
            )
        logger.info(
            "ldapconnector.test.success url=%s flavor=%s", self.connection.url, flavor
        )

    def check_alive(self) -> None:
        """
        Raises:
            ConnectivityError: the connection is closed or no longer answers
        """
        if not self.connection.is_alive():
            msg = f"The connection to {self.connection.url} is not alive"
            raise ConnectivityError(msg)

    def dispose(self) -> None:
        """Close the connection.  The connector reconnects if used again."""
        self.connection.close()

    def __enter__(self) -> "LdapConnector":
        self.connect()
        return self

    def __exit__(self, *args) -> None:
        self.dispose()

    # ----------------------------------
    # Schema
    # ----------------------------------

    def schema(self) -> Schema:
        """
        Describe the directory in generic terms.

        The schema is reloaded from the directory on every call.

        Raises:
            ConnectivityError: the directory can't be reached
            SchemaError: the schema can't be used

        """
        if self.connection.is_connected:
            self.refresh_schema()
        else:
            self.connect()
        return self.schema_translator.translate_schema()

    # ----------------------------------
    # Helpers
    # ----------------------------------

    def _single_string(self, attribute: Attribute) -> str:
        values = attribute.values
        if len(values) != 1 or not isinstance(values[0], str) or not values[0].strip():
            msg = f"{attribute.name} takes exactly one non-blank string, got {values!r}"
            raise InvalidValueError(msg)
        return values[0]

    def _to_dn(self, attribute: Attribute) -> str:
        dn = self._single_string(attribute)
        if not is_dn(dn):
            msg = f"{dn!r} is not a valid distinguished name"
            raise InvalidValueError(msg)
        return dn

    def _object_class_filter(self, ldap_object_class: ObjectClassDescriptor) -> Filter:
        return Filter.attribute("objectClass").equal_to(ldap_object_class.name)

    def _scope(self, options: OperationOptions) -> str:
        scope = options.scope or SCOPE_SUB
        to_ldap_scope(scope)
        return scope

    def _base_dn(
        self, ldap_object_class: ObjectClassDescriptor, options: OperationOptions
    ) -> str:
        # The container is taken as a DN as-is, saving a lookup
        if options.container:
            return options.container
        st = self.schema_translator
        if self.configuration.user_container_dn and st.is_account_object_class(ldap_object_class):
            return self.configuration.user_container_dn
        if self.configuration.group_container_dn and st.is_group_object_class(ldap_object_class):
            return self.configuration.group_container_dn
        return self.configuration.base_context

    def _attributes_to_get(
        self, ldap_object_class: ObjectClassDescriptor, options: OperationOptions
    ) -> list[str]:
        if options.attributes_to_get is None:
            attributes = ["*"]
        else:
            attributes = self.rewriter.attributes_to_fetch(
                ldap_object_class, options.attributes_to_get
            )
        if not self.configuration.uid_is_dn:
            attributes.append(self.schema_translator.uid_attribute().name)
        seen: set[str] = set()
        unique = []
        for name in attributes:
            if name.lower() not in seen:
                seen.add(name.lower())
                unique.append(name)
        return unique

    def _dn_lookup(self, query_filter: QueryFilter | None) -> str | None:
        """
        Return the DN to read directly if ``query_filter`` is an equality match
        on the DN, else ``None``.
        """
        if not isinstance(query_filter, EqualsFilter):
            return None
        if query_filter.name == NAME or (
            query_filter.name == UID and self.configuration.uid_is_dn
        ):
            return self._to_dn(Attribute(query_filter.name, query_filter.value))
        return None

    # ----------------------------------
    # Search
    # ----------------------------------

    def execute_query(
        self,
        object_class: str,
        query_filter: QueryFilter | None,
        handler: ResultsHandler,
        options: OperationOptions | None = None,
    ) -> SearchResult:
        """
        Search for objects of ``object_class`` and hand each to ``handler``.

        An equality filter on ``__NAME__`` (or on ``__UID__`` when the
        identifier is the DN) reads that one entry directly.  Everything else
        is searched for under ``options.container``, else the configured
        container for accounts or groups, else the base context.

        Args:
            object_class: the generic object class
            query_filter: the generic filter, or ``None`` for every object
            handler: called with each object; return ``False`` to stop

        Keyword Args:
            options: per-call options

        Raises:
            UnknownMappingError: the object class, an attribute or a filter
                can't be mapped onto the directory
            ReferralError: the search met a referral under the ``throw`` policy
            DirectoryIOError: the search failed

        Returns:
            Whether all results were returned, and the paging cookie if any.

        """
        options = options or OperationOptions()
        self._ensure_connected()
        st = self.schema_translator
        ldap_object_class = st.to_ldap_object_class(object_class)
        attributes = self._attributes_to_get(ldap_object_class, options)

        def deliver(obj: ConnectorObject) -> Any:
            return handler(self.rewriter.extend_connector_object(obj, ldap_object_class))

        dn = self._dn_lookup(query_filter)
        if dn is not None:
            # at most one entry, so never paged
            strategy = SimpleSearchStrategy(
                self.connection,
                self.configuration,
                st,
                object_class,
                deliver,
                options=options,
            )
            try:
                return strategy.search(
                    dn, self._object_class_filter(ldap_object_class), SCOPE_BASE, attributes
                )
            except NotFoundError:
                logger.debug("ldapconnector.search.no-such-entry dn=%s", dn)
                return SearchResult()

        filter_node = LdapFilterTranslator(st, ldap_object_class).translate(query_filter)
        oc_filter = self._object_class_filter(ldap_object_class)
        if filter_node is None:
            filter_node = oc_filter
        else:
            filter_node = Filter.AND([oc_filter, filter_node])
        strategy_class = choose_search_strategy(
            self.connection, self.configuration, object_class, options
        )
        strategy = strategy_class(
            self.connection,
            self.configuration,
            st,
            object_class,
            deliver,
            options=options,
        )
        return strategy.search(
            self._base_dn(ldap_object_class, options),
            filter_node,
            self._scope(options),
            attributes,
        )

    def resolve_dn(
        self, object_class: str, uid: str, options: OperationOptions | None = None
    ) -> str:
        """
        Find the DN of the entry with identifier ``uid``.

        When the identifier is the DN, ``uid`` is checked and returned as is.

        Args:
            object_class: the generic object class
            uid: the identifier

        Keyword Args:
            options: ``container`` and ``scope`` narrow the search

        Raises:
            InvalidValueError: the identifier is the DN and ``uid`` is not one
            NotFoundError: no entry has that identifier
            SchemaError: more than one entry has it

        Returns:
            The DN.

        """
        if self.configuration.uid_is_dn:
            return self._to_dn(Attribute(UID, uid))
        options = options or OperationOptions()
        self._ensure_connected()
        st = self.schema_translator
        ldap_object_class = st.to_ldap_object_class(object_class)
        uid_filter = LdapFilterTranslator(st, ldap_object_class).translate(
            EqualsFilter(UID, uid)
        )
        filterstr = Filter.AND(
            [self._object_class_filter(ldap_object_class), uid_filter]
        ).to_string()
        results = self.connection.search_s(
            self._base_dn(ldap_object_class, options),
            to_ldap_scope(self._scope(options)),
            filterstr,
            [st.uid_attribute().name],
        )
        if not results:
            msg = f"No {object_class} has identifier {uid}"
            raise NotFoundError(msg)
        if len(results) > 1:
            msg = (
                f"{len(results)} entries have identifier {uid}: "
                f"{', '.join(dn for dn, _ in results)}"
            )
            raise SchemaError(msg)
        return results[0][0]

    # ----------------------------------
    # Create
    # ----------------------------------

    def create(
        self,
        object_class: str,
        attributes: GenericAttributes,
        options: OperationOptions | None = None,
    ) -> str:
        """
        Create an entry.

        Args:
            object_class: the generic object class
            attributes: the attributes, including ``__NAME__``, the new DN

        Keyword Args:
            options: unused; accepted for symmetry with the other operations

        Raises:
            InvalidValueError: ``__NAME__`` is missing or not a DN, or a value
                does not convert
            UnknownMappingError: the object class or an attribute can't be mapped
            AlreadyExistsError: an entry already exists at the DN
            NotFoundError: the entry could not be read back after the add
            InvalidStateError: the entry read back has no usable identifier
            PartialUpdateError: the entry was added but a follow-up
                modification of another entry failed

        Returns:
            The new entry's identifier.

        """
        attributes = build_attributes(attributes)
        name = find_attribute(attributes, NAME)
        if name is None:
            msg = f"Missing {NAME} attribute"
            raise InvalidValueError(msg)
        dn = self._to_dn(name)
        self._ensure_connected()
        ldap_object_class = self.schema_translator.to_ldap_object_class(object_class)

        batch = ModificationBatch(dn, connection=self.connection, is_new=True)
        object_classes = [ldap_object_class.name, *self.configuration.extra_object_classes]
        batch.add(ldap.MOD_ADD, "objectClass", [oc.encode("utf-8") for oc in object_classes])
        rest = [a for a in attributes if a.name != NAME]
        for attribute in rest:
            self.rewriter.extend_attribute_modification(
                batch, ldap_object_class, attribute, ldap.MOD_ADD
            )
        self.rewriter.post_modification(batch, ldap_object_class, rest, ldap.MOD_ADD)

        self.connection.add(dn, batch.to_add_modlist())
        logger.info("ldapconnector.create.success dn=%s object_class=%s", dn, object_class)
        self._apply_deferred(batch, ["add"])
        return self._created_uid(dn, attributes)

    def _created_uid(self, dn: str, attributes: list[Attribute]) -> str:
        if self.configuration.uid_is_dn:
            return dn
        supplied = find_attribute(attributes, UID) or find_attribute(
            attributes, self.configuration.uid_attribute
        )
        if supplied is not None and supplied.values:
            if supplied.is_named(UID):
                return str(supplied.value)
            st = self.schema_translator
            # binary identifiers come back as hex, like any other read
            return st.uid_to_generic(st.to_ldap_value(st.uid_attribute(), supplied.value))
        try:
            results = self.connection.search_s(
                dn,
                ldap.SCOPE_BASE,
                SEARCH_FILTER_ALL,
                [self.configuration.uid_attribute],
            )
        except NotFoundError as e:
            msg = f"Entry {dn} was not found right after it was created"
            raise NotFoundError(msg) from e
        if not results:
            msg = f"Entry {dn} was not found right after it was created"
            raise NotFoundError(msg)
        return self.schema_translator.uid_from_entry(*results[0])

    # ----------------------------------
    # Update
    # ----------------------------------

    def update(
        self,
        object_class: str,
        uid: str,
        attributes: GenericAttributes,
        options: OperationOptions | None = None,
    ) -> str:
        """
        Replace attribute values, renaming or moving the entry first if
        ``__NAME__`` is given and differs from the current DN.

        Every attribute is translated before anything is written.  An
        attribute given with no values is removed.

        Args:
            object_class: the generic object class
            uid: the entry's identifier
            attributes: the new values

        Keyword Args:
            options: ``container`` and ``scope`` narrow the identifier lookup

        Raises:
            NotFoundError: no entry has identifier ``uid``
            InvalidValueError: a value does not convert
            UnknownMappingError: an attribute can't be mapped
            PartialUpdateError: the entry was renamed (or modified) but a later
                step failed

        Returns:
            The entry's identifier, which changes with a rename when the
            identifier is the DN.

        """
        return self._modify(object_class, uid, attributes, ldap.MOD_REPLACE, options)

    def add_attribute_values(
        self,
        object_class: str,
        uid: str,
        attributes: GenericAttributes,
        options: OperationOptions | None = None,
    ) -> str:
        """
        Add values to attributes.  ``__NAME__`` can't be given; rename with
        :meth:`update`.

        Raises:
            InvalidValueError: ``__NAME__`` was given, or a value does not convert
            NotFoundError: no entry has identifier ``uid``

        """
        return self._modify(object_class, uid, attributes, ldap.MOD_ADD, options)

    def remove_attribute_values(
        self,
        object_class: str,
        uid: str,
        attributes: GenericAttributes,
        options: OperationOptions | None = None,
    ) -> str:
        """
        Remove values from attributes.  ``__NAME__`` can't be given.

        Raises:
            InvalidValueError: ``__NAME__`` was given, or a value does not convert
            NotFoundError: no entry has identifier ``uid``

        """
        return self._modify(object_class, uid, attributes, ldap.MOD_DELETE, options)

    def _modify(
        self,
        object_class: str,
        uid: str,
        attributes: GenericAttributes,
        op: int,
        options: OperationOptions | None,
    ) -> str:
        attributes = build_attributes(attributes)
        name = find_attribute(attributes, NAME)
        if name is not None and op != ldap.MOD_REPLACE:
            msg = f"Can't add or remove values of {NAME}; rename with update"
            raise InvalidValueError(msg)
        self._ensure_connected()
        ldap_object_class = self.schema_translator.to_ldap_object_class(object_class)
        old_dn = self.resolve_dn(object_class, uid, options)
        new_dn = self._to_dn(name) if name is not None else old_dn
        renaming = normalize_dn(old_dn) != normalize_dn(new_dn)

        batch = ModificationBatch(new_dn, connection=self.connection, current_dn=old_dn)
        rest = [a for a in attributes if a.name != NAME]
        for attribute in rest:
            self.rewriter.extend_attribute_modification(batch, ldap_object_class, attribute, op)
        self.rewriter.post_modification(batch, ldap_object_class, rest, op)

        completed: list[str] = []
        if renaming:
            self.connection.rename(old_dn, new_dn)
            logger.info("ldapconnector.rename.success old_dn=%s new_dn=%s", old_dn, new_dn)
            completed.append("rename")
        try:
            if batch:
                self.connection.modify(new_dn, batch.modifications)
                completed.append("modify")
            else:
                logger.debug("ldapconnector.modify.no-changes dn=%s", new_dn)
        except ConnectorError as e:
            if not completed:
                raise
            msg = f"Renamed {old_dn} to {new_dn}, but could not modify it: {e}"
            raise PartialUpdateError(msg, completed=completed, dn=new_dn) from e
        self._apply_deferred(batch, completed)
        if self.configuration.uid_is_dn:
            return new_dn
        return uid

    def _apply_deferred(self, batch: ModificationBatch, completed: list[str]) -> None:
        """
        Apply the modifications a rewriter queued for other entries, now that
        the primary change succeeded.

        Raises:
            PartialUpdateError: one of them failed

        """
        for dn, modlist in batch.deferred:
            try:
                self.connection.modify(dn, modlist)
            except ConnectorError as e:
                msg = f"Changed {batch.dn}, but could not update related entry {dn}: {e}"
                raise PartialUpdateError(msg, completed=completed, dn=batch.dn) from e
            completed.append(f"modify {dn}")

    # ----------------------------------
    # Delete
    # ----------------------------------

    def delete(
        self, object_class: str, uid: str, options: OperationOptions | None = None
    ) -> None:
        """
        Delete the entry with identifier ``uid``.

        Raises:
            NotFoundError: no entry has that identifier

        """
        dn = self.resolve_dn(object_class, uid, options)
        self._ensure_connected()
        self.connection.delete(dn)
        logger.info("ldapconnector.delete.success dn=%s object_class=%s", dn, object_class)

    # ----------------------------------
    # Sync
    # ----------------------------------

    def sync(
        self,
        object_class: str,
        token: SyncToken | None,
        handler: SyncResultsHandler,
        options: OperationOptions | None = None,
    ) -> SyncToken:
        """
        Deliver the changes made to objects of ``object_class`` since
        ``token``, oldest first.

        Args:
            object_class: the generic object class
            token: the token a previous sync returned, or ``None`` to start at
                the oldest change the directory still has
            handler: called with each delta; return ``False`` to stop

        Keyword Args:
            options: per-call options

        Raises:
            TokenExpiredError: the changelog no longer reaches back to ``token``

        Returns:
            The token to pass to the next sync.

        """
        self._ensure_connected()
        ldap_object_class = self.schema_translator.to_ldap_object_class(object_class)

        def deliver(delta: SyncDelta) -> Any:
            if delta.object is not None:
                delta.object = self.rewriter.extend_connector_object(
                    delta.object, ldap_object_class
                )
            return handler(delta)

        options = options or OperationOptions()
        strategy_class = choose_sync_strategy(self.configuration, object_class)
        strategy = strategy_class(
            self.connection,
            self.configuration,
            self.schema_translator,
            attributes=self._attributes_to_get(ldap_object_class, options),
        )
        return strategy.sync(object_class, token, deliver, options)

    def get_latest_sync_token(self, object_class: str) -> SyncToken:
        """Return the token of the most recent change in the changelog."""
        self._ensure_connected()
        strategy_class = choose_sync_strategy(self.configuration, object_class)
        strategy = strategy_class(self.connection, self.configuration, self.schema_translator)
        return strategy.get_latest_sync_token(object_class)

    def __repr__(self) -> str:
        return f"<LdapConnector {self.configuration!r}>"
