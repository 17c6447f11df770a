"""
Schema translation.

The directory schema is not known until we connect, so it is held as data:
tables of :class:`AttributeTypeDescriptor` and :class:`ObjectClassDescriptor`
built from the subschema entry.  :class:`SchemaTranslator` answers every
"what does this generic name mean in the directory" question by looking
things up in those tables, and converts values in both directions using each
attribute's :mod:`~ldapconnector.syntaxes` syntax.
"""

import logging
import threading
from collections.abc import Iterable
from typing import Any, ClassVar

from ldap.cidict import cidict
from ldap.schema.models import AttributeType, ObjectClass

from .config import PSEUDO_ATTRIBUTE_DN_NAME, LdapConfiguration
from .exceptions import (
    InvalidStateError,
    InvalidValueError,
    SchemaError,
    UnknownAttributeError,
    UnknownObjectClassError,
)
from .objects import (
    ACCOUNT,
    GROUP,
    NAME,
    PASSWORD,
    UID,
    Attribute,
    AttributeInfo,
    ConnectorObject,
    ObjectClassInfo,
    Schema,
)
from .syntaxes import DNSyntax, ExactStringSyntax, Syntax, get_syntax

logger = logging.getLogger(__name__)


class AttributeTypeDescriptor:
    """
    One attribute type from the directory schema.

    Args:
        oid: the attribute type's OID
        names: its names; the first is the canonical one
        syntax: the syntax its values are in

    Keyword Args:
        single_value: the attribute may hold only one value
        operational: the attribute is maintained by the server
        no_user_mod: clients may not modify the attribute
        pseudo: not a real attribute type (the DN)

    """

    def __init__(
        self,
        oid: str,
        names: Iterable[str],
        syntax: Syntax,
        single_value: bool = False,
        operational: bool = False,
        no_user_mod: bool = False,
        pseudo: bool = False,
    ) -> None:
        self.oid = oid
        self.names: tuple[str, ...] = tuple(names) or (oid,)
        self.syntax = syntax
        self.single_value = single_value
        self.operational = operational
        self.no_user_mod = no_user_mod
        self.pseudo = pseudo

    @property
    def name(self) -> str:
        return self.names[0]

    def is_named(self, name: str) -> bool:
        name = name.lower()
        return name == self.oid or any(n.lower() == name for n in self.names)

    def __repr__(self) -> str:
        return f"<AttributeTypeDescriptor {self.name} syntax={self.syntax.name}>"


class ObjectClassDescriptor:
    """
    One object class from the directory schema.

    Args:
        oid: the object class's OID
        names: its names; the first is the canonical one
        kind: one of :attr:`STRUCTURAL`, :attr:`ABSTRACT` or :attr:`AUXILIARY`

    Keyword Args:
        sup: names of its superclasses
        must: names of its mandatory attributes
        may: names of its optional attributes

    """

    STRUCTURAL: ClassVar[int] = 0
    ABSTRACT: ClassVar[int] = 1
    AUXILIARY: ClassVar[int] = 2

    def __init__(
        self,
        oid: str,
        names: Iterable[str],
        kind: int = STRUCTURAL,
        sup: Iterable[str] = (),
        must: Iterable[str] = (),
        may: Iterable[str] = (),
    ) -> None:
        self.oid = oid
        self.names: tuple[str, ...] = tuple(names) or (oid,)
        self.kind = kind
        self.sup: tuple[str, ...] = tuple(sup)
        self.must: tuple[str, ...] = tuple(must)
        self.may: tuple[str, ...] = tuple(may)

    @property
    def name(self) -> str:
        return self.names[0]

    @property
    def is_structural(self) -> bool:
        return self.kind == self.STRUCTURAL

    @property
    def is_auxiliary(self) -> bool:
        return self.kind == self.AUXILIARY

    def __repr__(self) -> str:
        return f"<ObjectClassDescriptor {self.name} kind={self.kind}>"


#: The distinguished name, addressed like an attribute.
DN_ATTRIBUTE = AttributeTypeDescriptor(
    "",
    (PSEUDO_ATTRIBUTE_DN_NAME,),
    DNSyntax(),
    single_value=True,
    pseudo=True,
)


class SchemaTables:
    """
    An immutable snapshot of the directory schema.

    Args:
        attributes: attribute types keyed by every lower-cased name and OID
        object_classes: object classes keyed by every lower-cased name and OID
        legal: for each lower-cased object class name, every attribute legal for
            it (through its superclasses) mapped to ``(descriptor, required)``

    """

    def __init__(
        self,
        attributes: dict[str, AttributeTypeDescriptor],
        object_classes: dict[str, ObjectClassDescriptor],
        legal: dict[str, dict[str, tuple[AttributeTypeDescriptor, bool]]],
    ) -> None:
        self.attributes = attributes
        self.object_classes = object_classes
        self.legal = legal

    def unique_object_classes(self) -> list[ObjectClassDescriptor]:
        seen: dict[str, ObjectClassDescriptor] = {}
        for descriptor in self.object_classes.values():
            seen.setdefault(descriptor.oid, descriptor)
        return sorted(seen.values(), key=lambda d: d.name.lower())


class SchemaTranslator:
    """
    Maps the generic object model onto the directory schema and back.

    The schema is loaded with :meth:`load_schema` and then stays fixed until
    the next :meth:`load_schema`.  Loading builds a complete new set of
    tables and swaps them in under a lock, so lookups running concurrently
    with a reload see either the old schema or the new one, never a mix.

    Args:
        configuration: the connector configuration

    Keyword Args:
        syntax_overrides: vendor syntax OIDs, consulted before the standard ones

    """

    def __init__(
        self,
        configuration: LdapConfiguration,
        syntax_overrides: dict[str, type[Syntax]] | None = None,
    ) -> None:
        self.configuration = configuration
        self.syntax_overrides = syntax_overrides or {}
        self._tables: SchemaTables | None = None
        self._lock = threading.Lock()
        self._aliases: dict[str, str] = {
            generic.lower(): native
            for generic, native in configuration.attribute_aliases.items()
        }
        self._reverse_aliases: dict[str, str] = {
            native.lower(): generic
            for generic, native in configuration.attribute_aliases.items()
        }
        self._operational: set[str] = {
            name.lower() for name in configuration.operational_attributes
        }

    # ----------------------------------
    # Loading
    # ----------------------------------

    def load_schema(self, connection: Any) -> None:
        """
        Fetch and parse the directory schema, replacing any loaded before.

        Args:
            connection: a :class:`~ldapconnector.connection.DirectoryConnection`

        Raises:
            ConnectivityError: the directory can't be reached
            SchemaError: the schema definitions are malformed or ambiguous, and
                we're not in quirks mode

        """
        subschema = cidict(connection.read_subschema())
        tables = self.build_tables(
            subschema.get("attributeTypes", []), subschema.get("objectClasses", [])
        )
        with self._lock:
            self._tables = tables
        logger.info(
            "ldapconnector.schema.loaded object_classes=%d attribute_types=%d",
            len(tables.unique_object_classes()),
            len({d.oid for d in tables.attributes.values()}),
        )

    def build_tables(
        self, attribute_types: Iterable[bytes | str], object_classes: Iterable[bytes | str]
    ) -> SchemaTables:
        """
        Parse raw ``attributeTypes`` and ``objectClasses`` values into tables.

        Args:
            attribute_types: the subschema entry's ``attributeTypes`` values
            object_classes: the subschema entry's ``objectClasses`` values

        Raises:
            SchemaError: a definition is malformed or ambiguous, and we're not
                in quirks mode

        Returns:
            The new tables.

        """
        raw_attributes = self._parse(attribute_types, AttributeType, "attribute type")
        raw_classes = self._parse(object_classes, ObjectClass, "object class")
        attributes = self._build_attributes(raw_attributes)
        classes = self._build_object_classes(raw_classes)
        legal = {}
        for key, descriptor in classes.items():
            legal[key] = self._collect_legal(descriptor, classes, attributes)
        return SchemaTables(attributes, classes, legal)

    def _schema_problem(self, msg: str) -> None:
        if self.configuration.schema_quirks_mode:
            logger.warning("Ignoring schema problem (quirks mode): %s", msg)
            return
        raise SchemaError(msg)

    def _parse(self, definitions: Iterable[bytes | str], element_class: type, label: str) -> list:
        elements = []
        for raw in definitions:
            text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            try:
                element = element_class(text)
            except (ValueError, IndexError, KeyError, TypeError) as e:
                self._schema_problem(f"Malformed {label} definition {text!r}: {e}")
                continue
            if not element.oid:
                self._schema_problem(f"The {label} definition {text!r} has no OID")
                continue
            elements.append(element)
        return elements

    def _register(self, table: dict[str, Any], element: Any, label: str) -> bool:
        keys = [element.oid.lower()] + [name.lower() for name in element.names or ()]
        for key in keys:
            if key in table and table[key].oid != element.oid:
                self._schema_problem(
                    f"Ambiguous {label} {key}: defined by both {table[key].oid} "
                    f"and {element.oid}"
                )
                return False
        if element.oid.lower() in table:
            self._schema_problem(f"Duplicate {label} OID {element.oid}")
            return False
        return True

    def _resolve_syntax(
        self, element: AttributeType, raw: dict[str, AttributeType]
    ) -> tuple[str | None, int | None]:
        seen: set[str] = set()
        current: AttributeType | None = element
        while current is not None:
            if current.syntax:
                return current.syntax, current.syntax_len
            if current.oid in seen or not current.sup:
                break
            seen.add(current.oid)
            parent = raw.get(current.sup[0].lower())
            if parent is None:
                self._schema_problem(
                    f"Attribute type {element.names or element.oid} has undefined "
                    f"superior {current.sup[0]}"
                )
                break
            current = parent
        return None, None

    def _build_attributes(
        self, elements: list[AttributeType]
    ) -> dict[str, AttributeTypeDescriptor]:
        raw: dict[str, AttributeType] = {}
        for element in elements:
            if not self._register(raw, element, "attribute type"):
                continue
            raw[element.oid.lower()] = element
            for name in element.names or ():
                raw[name.lower()] = element
        attributes: dict[str, AttributeTypeDescriptor] = {}
        for key, element in raw.items():
            if key != element.oid.lower():
                continue
            syntax_oid, syntax_len = self._resolve_syntax(element, raw)
            descriptor = AttributeTypeDescriptor(
                element.oid,
                element.names or (),
                get_syntax(syntax_oid, syntax_len, self.syntax_overrides),
                single_value=bool(element.single_value),
                operational=bool(element.usage),
                no_user_mod=bool(element.no_user_mod),
            )
            attributes[key] = descriptor
            for name in descriptor.names:
                attributes[name.lower()] = descriptor
        return attributes

    def _build_object_classes(
        self, elements: list[ObjectClass]
    ) -> dict[str, ObjectClassDescriptor]:
        classes: dict[str, ObjectClassDescriptor] = {}
        for element in elements:
            if not self._register(classes, element, "object class"):
                continue
            descriptor = ObjectClassDescriptor(
                element.oid,
                element.names or (),
                kind=element.kind,
                sup=element.sup or (),
                must=element.must or (),
                may=element.may or (),
            )
            classes[element.oid.lower()] = descriptor
            for name in descriptor.names:
                classes[name.lower()] = descriptor
        return classes

    def _collect_legal(
        self,
        descriptor: ObjectClassDescriptor,
        classes: dict[str, ObjectClassDescriptor],
        attributes: dict[str, AttributeTypeDescriptor],
    ) -> dict[str, tuple[AttributeTypeDescriptor, bool]]:
        legal: dict[str, tuple[AttributeTypeDescriptor, bool]] = {}
        pending = [descriptor]
        seen: set[str] = set()
        while pending:
            current = pending.pop()
            if current.oid in seen:
                continue
            seen.add(current.oid)
            for names, required in ((current.must, True), (current.may, False)):
                for name in names:
                    attribute = attributes.get(name.lower())
                    if attribute is None:
                        self._schema_problem(
                            f"Object class {current.name} references undefined "
                            f"attribute type {name}"
                        )
                        continue
                    _, already_required = legal.get(attribute.name.lower(), (None, False))
                    for alias in attribute.names:
                        legal[alias.lower()] = (attribute, required or already_required)
            for sup in current.sup:
                parent = classes.get(sup.lower())
                if parent is None:
                    self._schema_problem(
                        f"Object class {current.name} has undefined superior {sup}"
                    )
                    continue
                pending.append(parent)
        return legal

    @property
    def tables(self) -> SchemaTables:
        """
        The currently loaded schema.

        Raises:
            SchemaError: no schema has been loaded yet

        """
        with self._lock:
            tables = self._tables
        if tables is None:
            msg = "The directory schema has not been loaded"
            raise SchemaError(msg)
        return tables

    @property
    def is_loaded(self) -> bool:
        with self._lock:
            return self._tables is not None

    # ----------------------------------
    # Object classes
    # ----------------------------------

    def to_ldap_object_class(self, object_class: str) -> ObjectClassDescriptor:
        """
        Return the structural object class for a generic object class.

        ``__ACCOUNT__`` and ``__GROUP__`` map to the configured account and
        group classes; any other name must match a structural class,
        ignoring case.

        Args:
            object_class: the generic object class

        Raises:
            UnknownObjectClassError: no structural class matches

        Returns:
            The object class descriptor.

        """
        native = {
            ACCOUNT: self.configuration.account_object_class,
            GROUP: self.configuration.group_object_class,
        }.get(object_class, object_class)
        descriptor = self.tables.object_classes.get(native.lower())
        if descriptor is None:
            msg = f"Unknown object class {object_class}"
            raise UnknownObjectClassError(msg)
        if not descriptor.is_structural:
            msg = f"Object class {object_class} is not a structural object class"
            raise UnknownObjectClassError(msg)
        return descriptor

    def is_group_object_class(self, object_class: ObjectClassDescriptor) -> bool:
        group_class = self.configuration.group_object_class.lower()
        return any(name.lower() == group_class for name in object_class.names)

    def is_account_object_class(self, object_class: ObjectClassDescriptor) -> bool:
        account_class = self.configuration.account_object_class.lower()
        return any(name.lower() == account_class for name in object_class.names)

    def _legal_attributes(
        self, object_class: ObjectClassDescriptor
    ) -> dict[str, tuple[AttributeTypeDescriptor, bool]]:
        tables = self.tables
        legal = dict(tables.legal.get(object_class.name.lower(), {}))
        for extra in self.configuration.extra_object_classes:
            for key, value in tables.legal.get(extra.lower(), {}).items():
                legal.setdefault(key, value)
        return legal

    # ----------------------------------
    # Attributes
    # ----------------------------------

    def uid_attribute(self) -> AttributeTypeDescriptor:
        """
        Return the descriptor of the configured unique identifier attribute.

        Raises:
            SchemaError: the attribute is not defined in the schema, and we're
                not in quirks mode

        """
        if self.configuration.uid_is_dn:
            return DN_ATTRIBUTE
        name = self.configuration.uid_attribute
        descriptor = self.tables.attributes.get(name.lower())
        if descriptor is None:
            self._schema_problem(f"The identifier attribute {name} is not in the schema")
            descriptor = AttributeTypeDescriptor(
                "", (name,), ExactStringSyntax(), single_value=True, operational=True
            )
        return descriptor

    def to_ldap_attribute(
        self, object_class: ObjectClassDescriptor, name: str
    ) -> AttributeTypeDescriptor:
        """
        Resolve a generic attribute name for an object class.

        ``__NAME__`` resolves to the distinguished name, ``__UID__`` to the
        configured identifier attribute and ``__PASSWORD__`` to the configured
        password attribute.  Anything else is looked for, ignoring case, among
        the attributes legal for the object class, then in the configured
        aliases, then in the operational attribute allowlist.

        Args:
            object_class: the structural object class
            name: the generic attribute name

        Raises:
            UnknownAttributeError: the name resolves to nothing

        Returns:
            The attribute descriptor.

        """
        if name == NAME:
            return DN_ATTRIBUTE
        if name == UID:
            return self.uid_attribute()
        if name == PASSWORD:
            name = self.configuration.password_attribute
        tables = self.tables
        key = name.lower()
        legal = self._legal_attributes(object_class)
        if key in legal:
            return legal[key][0]
        if key in self._aliases:
            descriptor = tables.attributes.get(self._aliases[key].lower())
            if descriptor is not None:
                return descriptor
        if key in self._operational and key in tables.attributes:
            return tables.attributes[key]
        msg = f"Unknown attribute {name} in object class {object_class.name}"
        raise UnknownAttributeError(msg)

    def to_generic_attribute_name(self, descriptor: AttributeTypeDescriptor) -> str:
        for name in descriptor.names:
            if name.lower() in self._reverse_aliases:
                return self._reverse_aliases[name.lower()]
        return descriptor.name

    # ----------------------------------
    # Values
    # ----------------------------------

    def to_ldap_value(self, descriptor: AttributeTypeDescriptor, value: Any) -> bytes:
        """
        Convert one generic value to the attribute's syntax.

        Raises:
            InvalidValueError: the value can't be represented in the syntax

        """
        if value is None:
            msg = f"Attribute {descriptor.name} can't have a null value"
            raise InvalidValueError(msg)
        return descriptor.syntax.to_db_value(value)

    def to_ldap_values(
        self, descriptor: AttributeTypeDescriptor, values: list[Any]
    ) -> list[bytes]:
        """
        Convert generic values to the attribute's syntax.

        Args:
            descriptor: the attribute
            values: the generic values

        Raises:
            InvalidValueError: a value can't be represented in the syntax, or
                several values were given for a single-valued attribute

        Returns:
            The encoded values.

        """
        if descriptor.single_value and len(values) > 1:
            msg = f"Attribute {descriptor.name} is single-valued, got {len(values)} values"
            raise InvalidValueError(msg)
        return [self.to_ldap_value(descriptor, value) for value in values]

    def to_generic_value(self, descriptor: AttributeTypeDescriptor, value: bytes) -> Any:
        return descriptor.syntax.from_db_value(value)

    def to_generic_values(
        self, descriptor: AttributeTypeDescriptor, values: list[bytes]
    ) -> list[Any]:
        return [self.to_generic_value(descriptor, value) for value in values]

    # ----------------------------------
    # Unique identifiers
    # ----------------------------------

    def uid_to_ldap_value(self, uid: str) -> bytes:
        """
        Encode a unique identifier for use in a filter.  Binary identifiers
        are exchanged as hex strings.

        Raises:
            InvalidValueError: a binary identifier is not valid hex

        """
        descriptor = self.uid_attribute()
        if descriptor.syntax.binary:
            try:
                return bytes.fromhex(uid)
            except ValueError as e:
                msg = f"Identifier {uid!r} is not a hex string"
                raise InvalidValueError(msg) from e
        return uid.encode("utf-8")

    def uid_to_generic(self, value: bytes) -> str:
        descriptor = self.uid_attribute()
        if descriptor.syntax.binary:
            return value.hex()
        return str(descriptor.syntax.from_db_value(value))

    def uid_from_entry(self, dn: str, attrs: dict[str, list[bytes]]) -> str:
        """
        Extract the unique identifier from a directory entry.

        Args:
            dn: the entry's distinguished name
            attrs: the entry's attributes

        Raises:
            InvalidStateError: the identifier attribute is missing or has more
                than one value

        Returns:
            The identifier.

        """
        if self.configuration.uid_is_dn:
            return dn
        uid_attribute = self.configuration.uid_attribute
        values = cidict(attrs).get(uid_attribute) or []
        if not values:
            msg = f"Entry {dn} has no identifier attribute {uid_attribute}"
            raise InvalidStateError(msg)
        if len(values) > 1:
            msg = (
                f"Entry {dn} has {len(values)} values for identifier attribute "
                f"{uid_attribute}"
            )
            raise InvalidStateError(msg)
        return self.uid_to_generic(values[0])

    # ----------------------------------
    # Entries and schema
    # ----------------------------------

    def to_connector_object(
        self,
        object_class: str,
        dn: str,
        attrs: dict[str, list[bytes]],
    ) -> ConnectorObject:
        """
        Translate a directory entry into an identity object.

        Attributes the schema doesn't know about are left out rather than
        failing the whole entry.

        Args:
            object_class: the generic object class to tag the object with
            dn: the entry's distinguished name
            attrs: the entry's attributes

        Raises:
            InvalidStateError: the entry has no usable identifier
            InvalidValueError: a value does not parse in its attribute's syntax

        Returns:
            The identity object.

        """
        tables = self.tables
        uid = self.uid_from_entry(dn, attrs)
        uid_key = None if self.configuration.uid_is_dn else self.configuration.uid_attribute.lower()
        attributes = []
        for name, values in attrs.items():
            # drop attribute options like ";binary"
            base_name = name.split(";", 1)[0]
            if base_name.lower() == uid_key:
                continue
            descriptor = tables.attributes.get(base_name.lower())
            if descriptor is None:
                logger.debug(
                    "ldapconnector.schema.unknown-attribute dn=%s attribute=%s", dn, name
                )
                continue
            attributes.append(
                Attribute(
                    self.to_generic_attribute_name(descriptor),
                    self.to_generic_values(descriptor, values),
                )
            )
        return ConnectorObject(object_class, uid, dn, attributes)

    def translate_schema(self) -> Schema:
        """
        Describe the loaded schema in generic terms.

        This is built anew on every call.

        Returns:
            One :class:`~ldapconnector.objects.ObjectClassInfo` per structural
            object class.

        """
        tables = self.tables
        uid_attribute = self.uid_attribute()
        object_classes = []
        for descriptor in tables.unique_object_classes():
            if not descriptor.is_structural:
                continue
            info = ObjectClassInfo(descriptor.name, native_name=descriptor.name)
            info.attributes.append(
                AttributeInfo(NAME, str, native_name=PSEUDO_ATTRIBUTE_DN_NAME, required=True)
            )
            if not uid_attribute.pseudo:
                info.attributes.append(
                    AttributeInfo(
                        UID,
                        str,
                        native_name=uid_attribute.name,
                        creatable=False,
                        updateable=False,
                    )
                )
            seen: set[str] = set()
            legal = self._legal_attributes(descriptor)
            for attribute, required in legal.values():
                if attribute.oid in seen or attribute is uid_attribute:
                    continue
                seen.add(attribute.oid)
                if attribute.name.lower() == "objectclass":
                    continue
                info.attributes.append(
                    AttributeInfo(
                        self.to_generic_attribute_name(attribute),
                        attribute.syntax.python_type,
                        native_name=attribute.name,
                        required=required,
                        multi_valued=not attribute.single_value,
                        creatable=not attribute.no_user_mod,
                        updateable=not attribute.no_user_mod,
                    )
                )
            for name in self.configuration.operational_attributes:
                attribute = tables.attributes.get(name.lower())
                if attribute is None or attribute.oid in seen:
                    continue
                seen.add(attribute.oid)
                info.attributes.append(
                    AttributeInfo(
                        attribute.name,
                        attribute.syntax.python_type,
                        native_name=attribute.name,
                        multi_valued=not attribute.single_value,
                        creatable=False,
                        updateable=False,
                        returned_by_default=False,
                    )
                )
            object_classes.append(info)
        return Schema(object_classes)
