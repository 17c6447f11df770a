# mypy: disable-error-code="attr-defined"
"""
Vendor hooks.

Directories disagree on how some things are spelled: whether an account is
enabled, how group membership is mirrored, which syntaxes exist.  An
:class:`AttributeModificationRewriter` is the one place such differences
live.  The connector picks one at construction time with
:func:`get_rewriter_class` and then calls it for:

* every attribute it turns into a modification
  (:meth:`~AttributeModificationRewriter.extend_attribute_modification`)
* every attribute name the caller asks to read
  (:meth:`~AttributeModificationRewriter.attributes_to_fetch`)
* every object it returns (:meth:`~AttributeModificationRewriter.extend_connector_object`)

Rewriters never talk to the directory themselves except to read the current
state of the entry being modified.  Changes they need made to *other* entries
are queued on the :class:`ModificationBatch` as deferred modifications, which
the connector applies only after the primary modification succeeded.
"""

import logging
from typing import ClassVar

from ldap.cidict import cidict
from ldap.dn import dn2str, str2dn

from ldapconnector import ldap

from .config import VENDOR_EDIRECTORY, VENDOR_GENERIC, LdapConfiguration
from .connection import DirectoryConnection
from .exceptions import (
    InvalidValueError,
    NotFoundError,
    UnsupportedOperationError,
)
from .objects import ENABLE, LOCK_OUT, NAME, UID, Attribute, ConnectorObject
from .schema import ObjectClassDescriptor, SchemaTranslator
from .syntaxes import (
    BinarySyntax,
    ExactStringSyntax,
    IntegerSyntax,
    StringSyntax,
    Syntax,
)
from .typing import AddModlist, DeferredModification, ModifyModList

logger = logging.getLogger(__name__)


def normalize_dn(dn: str) -> str:
    """Return ``dn`` in a form that compares equal for equivalent DNs."""
    return dn2str(str2dn(dn)).lower()


class ModificationBatch:
    """
    The modifications being collected for one entry.

    Args:
        dn: the entry's DN (after any rename)

    Keyword Args:
        connection: the connection, for rewriters that need to read the entry
        is_new: the entry is being created, so it has no current state
        current_dn: where the entry is now, if a rename to ``dn`` is pending

    """

    def __init__(
        self,
        dn: str,
        connection: DirectoryConnection | None = None,
        is_new: bool = False,
        current_dn: str | None = None,
    ) -> None:
        self.dn = dn
        self.current_dn = current_dn or dn
        self.connection = connection
        self.is_new = is_new
        self.modifications: ModifyModList = []
        #: ``(dn, modlist)`` pairs to apply to other entries afterwards.
        self.deferred: list[DeferredModification] = []

    def add(self, op: int, attribute: str, values: list[bytes] | None) -> None:
        self.modifications.append((op, attribute, values or None))

    def defer(self, dn: str, modlist: ModifyModList) -> None:
        self.deferred.append((dn, modlist))

    def current_values(self, attribute: str) -> list[bytes]:
        """
        Read the current values of ``attribute`` on the entry.

        Returns:
            The values, or an empty list for a new entry or one that lacks
            the attribute.

        """
        if self.is_new or self.connection is None:
            return []
        try:
            results = self.connection.search_s(
                self.current_dn, ldap.SCOPE_BASE, "(objectClass=*)", [attribute]
            )
        except NotFoundError:
            return []
        if not results:
            return []
        return cidict(results[0][1]).get(attribute) or []

    def to_add_modlist(self) -> AddModlist:
        """
        Collapse the modifications into an ``add_s`` modlist.  Modifications
        without values (removals) mean nothing for a new entry and are dropped.
        """
        merged: dict[str, list[bytes]] = {}
        names: dict[str, str] = {}
        for _, attribute, values in self.modifications:
            if not values:
                continue
            key = attribute.lower()
            names.setdefault(key, attribute)
            merged.setdefault(key, []).extend(values)
        return [(names[key], values) for key, values in merged.items()]

    def __bool__(self) -> bool:
        return bool(self.modifications)

    def __repr__(self) -> str:
        return (
            f"<ModificationBatch dn={self.dn} modifications={len(self.modifications)} "
            f"deferred={len(self.deferred)}>"
        )


class AttributeModificationRewriter:
    """
    The generic rewriter: translates attributes through the schema and
    nothing more.

    Args:
        configuration: the connector configuration
        schema_translator: the schema translator

    """

    #: Vendor syntax OIDs, consulted before the standard ones.
    syntax_overrides: ClassVar[dict[str, type[Syntax]]] = {}

    def __init__(
        self, configuration: LdapConfiguration, schema_translator: SchemaTranslator
    ) -> None:
        self.configuration = configuration
        self.schema_translator = schema_translator

    def extend_attribute_modification(
        self,
        batch: ModificationBatch,
        object_class: ObjectClassDescriptor,
        attribute: Attribute,
        op: int,
    ) -> None:
        """
        Add the modifications for one generic attribute to ``batch``.

        Args:
            batch: the batch to add to
            object_class: the structural object class of the entry
            attribute: the generic attribute
            op: ``ldap.MOD_ADD``, ``ldap.MOD_REPLACE`` or ``ldap.MOD_DELETE``

        Raises:
            UnknownAttributeError: the attribute is not legal for the class
            InvalidValueError: a value does not convert

        """
        self.add_generic_modification(batch, object_class, attribute, op)

    def add_generic_modification(
        self,
        batch: ModificationBatch,
        object_class: ObjectClassDescriptor,
        attribute: Attribute,
        op: int,
    ) -> None:
        st = self.schema_translator
        descriptor = st.to_ldap_attribute(object_class, attribute.name)
        if descriptor.pseudo:
            msg = f"{attribute.name} is the distinguished name and can't be modified as an attribute"
            raise InvalidValueError(msg)
        if attribute.name == UID:
            if len(attribute.values) > 1:
                msg = f"{UID} takes exactly one value, got {len(attribute.values)}"
                raise InvalidValueError(msg)
            values = [st.uid_to_ldap_value(str(v)) for v in attribute.values]
        else:
            values = st.to_ldap_values(descriptor, attribute.values)
        if op == ldap.MOD_ADD and not values:
            return
        batch.add(op, descriptor.name, values)

    def post_modification(
        self,
        batch: ModificationBatch,
        object_class: ObjectClassDescriptor,
        attributes: list[Attribute],
        op: int,
    ) -> None:
        """
        Called once the batch is complete, before anything is sent.  Queue
        modifications of other entries on ``batch`` with
        :meth:`ModificationBatch.defer`.
        """

    def attributes_to_fetch(
        self, object_class: ObjectClassDescriptor, names: list[str]
    ) -> list[str]:
        """
        Translate the generic attribute names a caller asked for into LDAP
        attribute names.

        Raises:
            UnknownAttributeError: a name is not legal for the class

        """
        fetch = []
        for name in names:
            if name == NAME:
                continue
            descriptor = self.schema_translator.to_ldap_attribute(object_class, name)
            if not descriptor.pseudo:
                fetch.append(descriptor.name)
        return fetch

    def extend_connector_object(
        self, obj: ConnectorObject, object_class: ObjectClassDescriptor
    ) -> ConnectorObject:
        """Rewrite an object read from the directory before it is returned."""
        return obj

    def _single_boolean(self, attribute: Attribute) -> bool:
        if len(attribute.values) != 1 or not isinstance(attribute.values[0], bool):
            msg = f"{attribute.name} takes exactly one boolean value, got {attribute.values!r}"
            raise InvalidValueError(msg)
        return attribute.values[0]


# --------------------------------------
# eDirectory
# --------------------------------------

EDIRECTORY_LOGIN_DISABLED: str = "loginDisabled"
EDIRECTORY_LOCKED_BY_INTRUDER: str = "lockedByIntruder"
EDIRECTORY_INTRUDER_RESET_TIME: str = "loginIntruderResetTime"
EDIRECTORY_GROUP_MEMBERSHIP: str = "groupMembership"
EDIRECTORY_EQUIVALENT_TO_ME: str = "equivalentToMe"

NOVELL_SYNTAX_PREFIX: str = "2.16.840.1.113719.1.1.5.1."


class NDSTimestampSyntax(ExactStringSyntax):
    """``seconds#replica#event``: opaque to us, and unordered."""

    name = "NDS Timestamp"


class EDirectoryRewriter(AttributeModificationRewriter):
    """
    NetIQ (Novell) eDirectory.

    * ``__ENABLE__`` is the inverse of ``loginDisabled``
    * ``__LOCK_OUT__`` can only be cleared, which resets ``lockedByIntruder``
      and ``loginIntruderResetTime``
    * with ``manage_equivalence_attributes``, changes to a group's members are
      repeated on the group's ``equivalentToMe``
    * with ``manage_reciprocal_group_attributes``, members' ``groupMembership``
      is kept pointing back at the group
    """

    syntax_overrides: ClassVar[dict[str, type[Syntax]]] = {
        f"{NOVELL_SYNTAX_PREFIX}6": StringSyntax,  # Case Ignore List
        f"{NOVELL_SYNTAX_PREFIX}12": BinarySyntax,  # Net Address
        f"{NOVELL_SYNTAX_PREFIX}14": StringSyntax,  # Tagged String
        f"{NOVELL_SYNTAX_PREFIX}15": StringSyntax,  # Tagged Name and String
        f"{NOVELL_SYNTAX_PREFIX}17": StringSyntax,  # NDS ACL
        f"{NOVELL_SYNTAX_PREFIX}19": NDSTimestampSyntax,
        f"{NOVELL_SYNTAX_PREFIX}22": IntegerSyntax,  # Counter
        f"{NOVELL_SYNTAX_PREFIX}23": StringSyntax,  # Tagged Name
        f"{NOVELL_SYNTAX_PREFIX}25": StringSyntax,  # Typed Name
    }

    def extend_attribute_modification(
        self,
        batch: ModificationBatch,
        object_class: ObjectClassDescriptor,
        attribute: Attribute,
        op: int,
    ) -> None:
        if attribute.name == ENABLE:
            enabled = self._single_boolean(attribute)
            batch.add(op, EDIRECTORY_LOGIN_DISABLED, [b"FALSE" if enabled else b"TRUE"])
            return
        if attribute.name == LOCK_OUT:
            if self._single_boolean(attribute):
                msg = "eDirectory accounts can only be unlocked, not locked"
                raise UnsupportedOperationError(msg)
            batch.add(op, EDIRECTORY_LOCKED_BY_INTRUDER, [b"FALSE"])
            batch.add(ldap.MOD_REPLACE, EDIRECTORY_INTRUDER_RESET_TIME, None)
            return
        self.add_generic_modification(batch, object_class, attribute, op)
        if (
            self.configuration.manage_equivalence_attributes
            and self._is_member_attribute(object_class, attribute)
        ):
            self.add_generic_modification(
                batch,
                object_class,
                Attribute(EDIRECTORY_EQUIVALENT_TO_ME, attribute.values),
                op,
            )

    def _is_member_attribute(
        self, object_class: ObjectClassDescriptor, attribute: Attribute
    ) -> bool:
        return self.schema_translator.is_group_object_class(
            object_class
        ) and attribute.is_named(self.configuration.group_member_attribute)

    def post_modification(
        self,
        batch: ModificationBatch,
        object_class: ObjectClassDescriptor,
        attributes: list[Attribute],
        op: int,
    ) -> None:
        if not self.configuration.manage_reciprocal_group_attributes:
            return
        for attribute in attributes:
            if not self._is_member_attribute(object_class, attribute):
                continue
            added, removed = self._membership_changes(batch, attribute, op)
            group_dn = [batch.dn.encode("utf-8")]
            for member_dn in added:
                batch.defer(member_dn, [(ldap.MOD_ADD, EDIRECTORY_GROUP_MEMBERSHIP, group_dn)])
            for member_dn in removed:
                batch.defer(
                    member_dn, [(ldap.MOD_DELETE, EDIRECTORY_GROUP_MEMBERSHIP, group_dn)]
                )

    def _membership_changes(
        self, batch: ModificationBatch, attribute: Attribute, op: int
    ) -> tuple[list[str], list[str]]:
        """
        Work out which members an operation adds and which it removes.

        Returns:
            ``(added, removed)`` member DNs.

        """
        requested = [str(v) for v in attribute.values]
        if op == ldap.MOD_ADD:
            return requested, []
        if op == ldap.MOD_DELETE and requested:
            return [], requested
        # A replace, or removing every value: compare with what is there now
        current = [
            v.decode("utf-8")
            for v in batch.current_values(self.configuration.group_member_attribute)
        ]
        wanted = requested if op == ldap.MOD_REPLACE else []
        current_keys = {normalize_dn(dn) for dn in current}
        wanted_keys = {normalize_dn(dn) for dn in wanted}
        added = [dn for dn in wanted if normalize_dn(dn) not in current_keys]
        removed = [dn for dn in current if normalize_dn(dn) not in wanted_keys]
        return added, removed

    def attributes_to_fetch(
        self, object_class: ObjectClassDescriptor, names: list[str]
    ) -> list[str]:
        fetch = []
        others = []
        for name in names:
            if name == ENABLE:
                fetch.append(EDIRECTORY_LOGIN_DISABLED)
            elif name == LOCK_OUT:
                fetch.append(EDIRECTORY_LOCKED_BY_INTRUDER)
            else:
                others.append(name)
        return fetch + super().attributes_to_fetch(object_class, others)

    def extend_connector_object(
        self, obj: ConnectorObject, object_class: ObjectClassDescriptor
    ) -> ConnectorObject:
        attributes = []
        for attribute in obj.attributes:
            if attribute.is_named(EDIRECTORY_LOGIN_DISABLED) and len(attribute.values) == 1:
                attributes.append(Attribute(ENABLE, not attribute.values[0]))
            elif (
                attribute.is_named(EDIRECTORY_LOCKED_BY_INTRUDER)
                and len(attribute.values) == 1
            ):
                attributes.append(Attribute(LOCK_OUT, bool(attribute.values[0])))
            else:
                attributes.append(attribute)
        obj.attributes = attributes
        return obj


REWRITERS: dict[str, type[AttributeModificationRewriter]] = {
    VENDOR_GENERIC: AttributeModificationRewriter,
    VENDOR_EDIRECTORY: EDirectoryRewriter,
}


def get_rewriter_class(configuration: LdapConfiguration) -> type[AttributeModificationRewriter]:
    """
    Return the rewriter class for the configured vendor.

    Raises:
        InvalidValueError: the vendor is unknown

    """
    try:
        return REWRITERS[configuration.vendor]
    except KeyError as e:
        msg = f"No attribute rewriter for vendor {configuration.vendor!r}"
        raise InvalidValueError(msg) from e
