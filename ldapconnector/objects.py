"""
The generic identity object model exchanged with the calling platform.

Attribute names here are *generic* names: the connector maps them onto the
directory schema.  A few names are reserved and carry special meaning:

* :data:`NAME` is the entry's distinguished name and drives renames
* :data:`UID` is the unique identifier the connector addresses entries by
* :data:`ENABLE`, :data:`LOCK_OUT` and :data:`PASSWORD` are account state
  attributes that vendor rewriters translate into directory-specific ones
"""

from collections.abc import Iterable, Mapping
from typing import Any

from .exceptions import InvalidValueError

NAME: str = "__NAME__"
UID: str = "__UID__"
ENABLE: str = "__ENABLE__"
LOCK_OUT: str = "__LOCK_OUT__"
PASSWORD: str = "__PASSWORD__"

ACCOUNT: str = "__ACCOUNT__"
GROUP: str = "__GROUP__"


def is_reserved(name: str) -> bool:
    return name.startswith("__") and name.endswith("__")


class Attribute:
    """
    A named, possibly multi-valued attribute.

    Args:
        name: the generic attribute name

    Keyword Args:
        values: a single value, an iterable of values, or ``None`` for no values

    """

    def __init__(self, name: str, values: Any = None) -> None:
        self.name = name
        if values is None:
            self.values: list[Any] = []
        elif isinstance(values, (str, bytes, bytearray)) or not isinstance(
            values, Iterable
        ):
            self.values = [values]
        else:
            self.values = list(values)

    def is_named(self, name: str) -> bool:
        return self.name.lower() == name.lower()

    @property
    def value(self) -> Any:
        """
        The single value of this attribute, or ``None`` if it has none.

        Raises:
            InvalidValueError: the attribute has more than one value

        """
        if not self.values:
            return None
        if len(self.values) > 1:
            msg = f"Attribute {self.name} has more than one value: {self.values!r}"
            raise InvalidValueError(msg)
        return self.values[0]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Attribute):
            return NotImplemented
        return self.is_named(other.name) and self.values == other.values

    def __hash__(self) -> int:
        return hash(self.name.lower())

    def __repr__(self) -> str:
        return f"Attribute({self.name!r}, {self.values!r})"


def build_attributes(
    attributes: Mapping[str, Any] | Iterable[Attribute],
) -> list[Attribute]:
    """
    Normalize ``attributes`` to a list of :class:`Attribute`.

    Args:
        attributes: either a mapping of name to value(s), or :class:`Attribute`
            objects

    Raises:
        InvalidValueError: the same attribute name appears more than once

    Returns:
        The attributes as a list.

    """
    if isinstance(attributes, Mapping):
        built = [Attribute(name, values) for name, values in attributes.items()]
    else:
        built = list(attributes)
    seen: set[str] = set()
    for attribute in built:
        key = attribute.name.lower()
        if key in seen:
            msg = f"Attribute {attribute.name} was given more than once"
            raise InvalidValueError(msg)
        seen.add(key)
    return built


def find_attribute(attributes: Iterable[Attribute], name: str) -> Attribute | None:
    for attribute in attributes:
        if attribute.is_named(name):
            return attribute
    return None


class ConnectorObject:
    """
    An identity object: an object class, a name, a unique identifier and a
    set of attributes.

    Args:
        object_class: the generic object class
        uid: the unique identifier
        name: the distinguished name
        attributes: everything else

    """

    def __init__(
        self,
        object_class: str,
        uid: str,
        name: str,
        attributes: Iterable[Attribute] | None = None,
    ) -> None:
        self.object_class = object_class
        self.uid = uid
        self.name = name
        self.attributes: list[Attribute] = list(attributes or [])

    def get(self, name: str) -> Attribute | None:
        """
        Return the attribute named ``name``, matched case-insensitively.
        ``__NAME__`` and ``__UID__`` are answered from :attr:`name` and
        :attr:`uid`.
        """
        if name == NAME:
            return Attribute(NAME, self.name)
        if name == UID:
            return Attribute(UID, self.uid)
        return find_attribute(self.attributes, name)

    def get_values(self, name: str) -> list[Any]:
        attribute = self.get(name)
        return attribute.values if attribute else []

    def to_dict(self) -> dict[str, list[Any]]:
        data = {NAME: [self.name], UID: [self.uid]}
        for attribute in self.attributes:
            data[attribute.name] = attribute.values
        return data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConnectorObject):
            return NotImplemented
        return (
            self.object_class == other.object_class
            and self.uid == other.uid
            and self.name == other.name
            and sorted(self.attributes, key=lambda a: a.name.lower())
            == sorted(other.attributes, key=lambda a: a.name.lower())
        )

    def __hash__(self) -> int:
        return hash((self.object_class, self.uid))

    def __repr__(self) -> str:
        return (
            f"<ConnectorObject {self.object_class} uid={self.uid!r} "
            f"name={self.name!r}>"
        )


class SyncToken:
    """
    An opaque position in a directory changelog.

    Callers store :attr:`value` between invocations and hand it back verbatim
    to resume.

    Args:
        value: the position

    """

    def __init__(self, value: Any) -> None:
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SyncToken):
            return NotImplemented
        return self.value == other.value

    def __hash__(self) -> int:
        return hash(self.value)

    def __repr__(self) -> str:
        return f"SyncToken({self.value!r})"


class SyncDelta:
    """
    One change event read from the changelog.

    Args:
        delta_type: one of :attr:`CREATE`, :attr:`UPDATE` or :attr:`DELETE`
        uid: the unique identifier of the affected entry
        token: the position of this change; resuming from it skips this change

    Keyword Args:
        object_class: the generic object class of the affected entry
        obj: the current state of the entry, for creates and updates
        previous_name: the entry's name before a rename

    """

    CREATE: str = "create"
    UPDATE: str = "update"
    DELETE: str = "delete"

    def __init__(
        self,
        delta_type: str,
        uid: str,
        token: SyncToken,
        object_class: str | None = None,
        obj: ConnectorObject | None = None,
        previous_name: str | None = None,
    ) -> None:
        if delta_type not in (self.CREATE, self.UPDATE, self.DELETE):
            msg = f"Unknown sync delta type: {delta_type}"
            raise ValueError(msg)
        self.delta_type = delta_type
        self.uid = uid
        self.token = token
        self.object_class = object_class
        self.object = obj
        self.previous_name = previous_name

    def __repr__(self) -> str:
        return f"<SyncDelta {self.delta_type} uid={self.uid!r} token={self.token!r}>"


class OperationOptions:
    """
    Per-call options.

    Keyword Args:
        container: DN to search under instead of the base context.  This is
            taken as-is, without checking that it names an existing entry.
        scope: ``base``, ``one`` or ``sub``; defaults to ``sub``
        attributes_to_get: generic names of the attributes to return
        page_size: return a single page of this many results
        paged_results_cookie: resume paging from this cookie
        allow_partial_results: on a size or time limit, return what was
            found instead of failing

    """

    def __init__(
        self,
        container: str | None = None,
        scope: str | None = None,
        attributes_to_get: list[str] | None = None,
        page_size: int | None = None,
        paged_results_cookie: str | None = None,
        allow_partial_results: bool = False,
    ) -> None:
        self.container = container
        self.scope = scope
        self.attributes_to_get = attributes_to_get
        self.page_size = page_size
        self.paged_results_cookie = paged_results_cookie
        self.allow_partial_results = allow_partial_results


class SearchResult:
    """
    What a search returns besides the objects it handed to the handler.

    Keyword Args:
        paged_results_cookie: the cookie to fetch the next page, if any
        all_results_returned: ``False`` if the search stopped early because the
            handler asked it to or a limit was hit

    """

    def __init__(
        self,
        paged_results_cookie: str | None = None,
        all_results_returned: bool = True,
    ) -> None:
        self.paged_results_cookie = paged_results_cookie
        self.all_results_returned = all_results_returned

    def __repr__(self) -> str:
        return (
            f"<SearchResult cookie={self.paged_results_cookie!r} "
            f"all_results_returned={self.all_results_returned}>"
        )


class AttributeInfo:
    """
    Describes one generic attribute of an object class.

    Args:
        name: the generic name

    Keyword Args:
        type: the Python type of its values
        native_name: the directory attribute it maps to
        required: must be supplied on create
        multi_valued: may hold more than one value
        creatable: may be supplied on create
        updateable: may be changed by update
        readable: is returned by searches
        returned_by_default: returned when no attributes were explicitly requested

    """

    def __init__(
        self,
        name: str,
        type: type = str,  # noqa: A002
        native_name: str | None = None,
        required: bool = False,
        multi_valued: bool = False,
        creatable: bool = True,
        updateable: bool = True,
        readable: bool = True,
        returned_by_default: bool = True,
    ) -> None:
        self.name = name
        self.type = type
        self.native_name = native_name
        self.required = required
        self.multi_valued = multi_valued
        self.creatable = creatable
        self.updateable = updateable
        self.readable = readable
        self.returned_by_default = returned_by_default

    def __repr__(self) -> str:
        return f"<AttributeInfo {self.name} type={self.type.__name__}>"


class ObjectClassInfo:
    """
    Describes one generic object class and its attributes.

    Args:
        name: the generic name

    Keyword Args:
        native_name: the structural directory class it maps to
        attributes: its attributes
        auxiliary: whether it is an auxiliary class

    """

    def __init__(
        self,
        name: str,
        native_name: str | None = None,
        attributes: list[AttributeInfo] | None = None,
        auxiliary: bool = False,
    ) -> None:
        self.name = name
        self.native_name = native_name
        self.attributes: list[AttributeInfo] = attributes or []
        self.auxiliary = auxiliary

    def get_attribute(self, name: str) -> AttributeInfo | None:
        for info in self.attributes:
            if info.name.lower() == name.lower():
                return info
        return None

    def __repr__(self) -> str:
        return f"<ObjectClassInfo {self.name} attributes={len(self.attributes)}>"


class Schema:
    """The generic view of the directory schema."""

    def __init__(self, object_classes: list[ObjectClassInfo] | None = None) -> None:
        self.object_classes: list[ObjectClassInfo] = object_classes or []

    def find_object_class(self, name: str) -> ObjectClassInfo | None:
        for info in self.object_classes:
            if info.name.lower() == name.lower():
                return info
        return None
