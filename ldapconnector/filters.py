"""
Generic query filters.

Callers describe what they are searching for with a tree of these nodes,
using generic attribute names.  :class:`ldapconnector.filter_translator.LdapFilterTranslator`
turns the tree into an LDAP filter.

Nodes can be combined with ``&``, ``|`` and ``~``::

    query = EqualsFilter("cn", "alice") & (
        EqualsFilter("mail", "a@x") | PresenceFilter("telephoneNumber")
    )
"""

from typing import Any, ClassVar


class QueryFilter:
    """Base class for all filter nodes."""

    def __and__(self, other: "QueryFilter") -> "AndFilter":
        return AndFilter(self, other)

    def __or__(self, other: "QueryFilter") -> "OrFilter":
        return OrFilter(self, other)

    def __invert__(self) -> "NotFilter":
        return NotFilter(self)


class AttributeFilter(QueryFilter):
    """
    A leaf node comparing one attribute with one value.

    Args:
        name: the generic attribute name
        value: the value to compare with

    """

    #: What kind of comparison this node makes.
    operator: ClassVar[str] = ""

    def __init__(self, name: str, value: Any) -> None:
        self.name = name
        self.value = value

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return (
            self.name.lower() == other.name.lower()  # type: ignore[attr-defined]
            and self.value == other.value  # type: ignore[attr-defined]
        )

    def __hash__(self) -> int:
        return hash((self.operator, self.name.lower()))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, {self.value!r})"


class EqualsFilter(AttributeFilter):
    """
    Matches entries whose attribute has ``value``.  A ``None`` value matches
    entries that do not have the attribute at all.
    """

    operator = "equals"


class ContainsFilter(AttributeFilter):
    operator = "contains"


class StartsWithFilter(AttributeFilter):
    operator = "starts_with"


class EndsWithFilter(AttributeFilter):
    operator = "ends_with"


class GreaterThanFilter(AttributeFilter):
    operator = "gt"


class GreaterThanOrEqualFilter(AttributeFilter):
    operator = "gte"


class LessThanFilter(AttributeFilter):
    operator = "lt"


class LessThanOrEqualFilter(AttributeFilter):
    operator = "lte"


class ContainsAllValuesFilter(AttributeFilter):
    """Matches entries whose attribute has every one of ``value``."""

    operator = "contains_all"

    def __init__(self, name: str, value: list[Any]) -> None:
        if not value:
            msg = "ContainsAllValuesFilter needs at least one value"
            raise ValueError(msg)
        super().__init__(name, list(value))


class PresenceFilter(AttributeFilter):
    """Matches entries that have any value for the attribute."""

    operator = "present"

    def __init__(self, name: str) -> None:
        super().__init__(name, None)

    def __repr__(self) -> str:
        return f"PresenceFilter({self.name!r})"


class CompositeFilter(QueryFilter):
    """A boolean combination of one or more filters."""

    operator: ClassVar[str] = ""

    def __init__(self, *filters: QueryFilter) -> None:
        if not filters:
            msg = f"{type(self).__name__} needs at least one filter"
            raise ValueError(msg)
        self.filters: list[QueryFilter] = list(filters)

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.filters == other.filters  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((self.operator, len(self.filters)))

    def __repr__(self) -> str:
        inner = ", ".join(repr(f) for f in self.filters)
        return f"{type(self).__name__}({inner})"


class AndFilter(CompositeFilter):
    operator = "and"


class OrFilter(CompositeFilter):
    operator = "or"


class NotFilter(QueryFilter):
    def __init__(self, query_filter: QueryFilter) -> None:
        self.filter = query_filter

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NotFilter):
            return NotImplemented
        return self.filter == other.filter

    def __hash__(self) -> int:
        return hash(("not", hash(self.filter)))

    def __repr__(self) -> str:
        return f"NotFilter({self.filter!r})"
