"""
Translation of generic query filters into LDAP filters.

The translation fails closed: if any node of the generic tree can't be
expressed against the directory schema, the whole translation fails with
:class:`~ldapconnector.exceptions.UnknownMappingError` rather than returning
a filter that would match a different set of entries.
"""

import logging
from typing import Any

from ldap_filter import Filter

from .exceptions import UnsupportedFilterError
from .filters import (
    AndFilter,
    AttributeFilter,
    ContainsAllValuesFilter,
    ContainsFilter,
    EndsWithFilter,
    EqualsFilter,
    GreaterThanFilter,
    GreaterThanOrEqualFilter,
    LessThanFilter,
    LessThanOrEqualFilter,
    NotFilter,
    OrFilter,
    PresenceFilter,
    QueryFilter,
    StartsWithFilter,
)
from .schema import AttributeTypeDescriptor, ObjectClassDescriptor, SchemaTranslator

logger = logging.getLogger(__name__)


def escape_binary(value: bytes) -> str:
    """
    Escape every byte of ``value`` as ``\\xx``, as RFC 4515 allows for any
    octet.
    """
    return "".join(f"\\{byte:02x}" for byte in value)


class LdapFilterTranslator:
    """
    Translates generic filters for one object class.

    Args:
        schema_translator: resolves attribute names and converts values
        object_class: the structural object class being searched

    """

    def __init__(
        self,
        schema_translator: SchemaTranslator,
        object_class: ObjectClassDescriptor,
    ) -> None:
        self.schema_translator = schema_translator
        self.object_class = object_class

    def translate(self, query_filter: QueryFilter | None) -> Filter | None:
        """
        Translate a generic filter tree.

        Args:
            query_filter: the generic filter, or ``None`` to match everything

        Raises:
            UnknownAttributeError: an attribute does not map onto the schema
            UnsupportedFilterError: a node can't be expressed for its
                attribute's syntax
            InvalidValueError: a value can't be converted to its attribute's syntax

        Returns:
            The LDAP filter, or ``None`` if ``query_filter`` was ``None``.

        """
        if query_filter is None:
            return None
        return self._translate(query_filter)

    def _translate(self, node: QueryFilter) -> Filter:  # noqa: PLR0911, PLR0912
        if isinstance(node, AndFilter):
            return Filter.AND([self._translate(child) for child in node.filters])
        if isinstance(node, OrFilter):
            return Filter.OR([self._translate(child) for child in node.filters])
        if isinstance(node, NotFilter):
            return Filter.NOT(self._translate(node.filter))
        if not isinstance(node, AttributeFilter):
            msg = f"Unsupported filter {node!r}"
            raise UnsupportedFilterError(msg)

        descriptor = self.schema_translator.to_ldap_attribute(self.object_class, node.name)
        if descriptor.pseudo:
            # The distinguished name is not an attribute, so there is nothing
            # to match on.  Lookups by DN never reach us.
            msg = f"Can't filter on {node.name}: it is the distinguished name"
            raise UnsupportedFilterError(msg)
        attribute = Filter.attribute(descriptor.name)

        if isinstance(node, PresenceFilter):
            return attribute.present()
        if isinstance(node, EqualsFilter):
            if node.value is None:
                return Filter.NOT(attribute.present())
            return self._equal_to(descriptor, node.value)
        if isinstance(node, ContainsAllValuesFilter):
            return Filter.AND([self._equal_to(descriptor, v) for v in node.value])
        if isinstance(node, (ContainsFilter, StartsWithFilter, EndsWithFilter)):
            self._require(descriptor, node, descriptor.syntax.substring, "substring")
            value = self._text(descriptor, node.value)
            if isinstance(node, ContainsFilter):
                return attribute.contains(value)
            if isinstance(node, StartsWithFilter):
                return attribute.starts_with(value)
            return attribute.ends_with(value)
        if isinstance(
            node,
            (
                GreaterThanFilter,
                GreaterThanOrEqualFilter,
                LessThanFilter,
                LessThanOrEqualFilter,
            ),
        ):
            self._require(descriptor, node, descriptor.syntax.ordering, "ordering")
            value = self._text(descriptor, node.value)
            if isinstance(node, GreaterThanOrEqualFilter):
                return attribute.gte(value)
            if isinstance(node, LessThanOrEqualFilter):
                return attribute.lte(value)
            # LDAP has no strict comparisons
            if isinstance(node, GreaterThanFilter):
                return Filter.AND([attribute.gte(value), Filter.NOT(attribute.equal_to(value))])
            return Filter.AND([attribute.lte(value), Filter.NOT(attribute.equal_to(value))])
        msg = f"Unsupported filter operator {node.operator!r} on {node.name}"
        raise UnsupportedFilterError(msg)

    def _require(
        self,
        descriptor: AttributeTypeDescriptor,
        node: AttributeFilter,
        supported: bool,
        kind: str,
    ) -> None:
        if not supported:
            msg = (
                f"Can't apply a {node.operator} filter to {descriptor.name}: "
                f"{descriptor.syntax.name} values have no {kind} matching"
            )
            raise UnsupportedFilterError(msg)

    def _text(self, descriptor: AttributeTypeDescriptor, value: Any) -> str:
        return self.schema_translator.to_ldap_value(descriptor, value).decode("utf-8")

    def _equal_to(self, descriptor: AttributeTypeDescriptor, value: Any) -> Filter:
        if descriptor is self.schema_translator.uid_attribute() and isinstance(value, str):
            encoded = self.schema_translator.uid_to_ldap_value(value)
        else:
            encoded = self.schema_translator.to_ldap_value(descriptor, value)
        if descriptor.syntax.binary:
            # value is pre-escaped
            return Filter.attribute(descriptor.name).raw(escape_binary(encoded))
        return Filter.attribute(descriptor.name).equal_to(encoded.decode("utf-8"))
