"""
LDAP attribute syntaxes.

Each :class:`Syntax` converts single values between the bytes python-ldap
hands us and the Python values the connector exposes: ``str`` for the string
family, ``bytes`` for binary, ``bool``, ``int`` and timezone-aware
``datetime.datetime`` for generalized time.  Syntaxes also say which filter
operations they support, which the filter translator relies on to refuse
filters that cannot be expressed.

:func:`get_syntax` maps a schema SYNTAX OID to a syntax instance.  Syntaxes we
don't know are treated as directory strings.
"""

import datetime
import logging
from typing import Any, ClassVar

import pytz
from ldap.dn import is_dn

from .exceptions import InvalidValueError

logger = logging.getLogger(__name__)


class Syntax:
    """
    The base syntax: UTF-8 text.

    Keyword Args:
        oid: the SYNTAX OID this instance was created for
        max_length: the length bound from the schema (``{n}``), if any

    """

    #: Human-readable name, used in error messages.
    name: ClassVar[str] = "Directory String"
    #: The Python type of values in this syntax.
    python_type: ClassVar[type] = str
    #: Can be matched with ``*`` substring filters.
    substring: ClassVar[bool] = True
    #: Can be matched with ``>=`` and ``<=`` filters.
    ordering: ClassVar[bool] = False
    #: Values are opaque bytes.
    binary: ClassVar[bool] = False

    def __init__(self, oid: str | None = None, max_length: int | None = None) -> None:
        self.oid = oid
        self.max_length = max_length

    def _invalid(self, value: Any, reason: str = "") -> InvalidValueError:
        msg = f"Invalid {self.name} value {value!r}"
        if reason:
            msg = f"{msg}: {reason}"
        return InvalidValueError(msg)

    def _check_length(self, value: str | bytes) -> None:
        if self.max_length is not None and len(value) > self.max_length:
            raise self._invalid(value, f"longer than {self.max_length}")

    def from_db_value(self, value: bytes) -> Any:
        """
        Convert a value read from LDAP to Python.

        Args:
            value: the raw value from python-ldap

        Raises:
            InvalidValueError: the value does not parse in this syntax

        Returns:
            The Python value.

        """
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise self._invalid(value, "not UTF-8") from e

    def to_db_value(self, value: Any) -> bytes:
        """
        Convert a Python value to bytes suitable for python-ldap.

        Args:
            value: the Python value

        Raises:
            InvalidValueError: the value can't be represented in this syntax

        Returns:
            The encoded value.

        """
        if not isinstance(value, str):
            raise self._invalid(value, "expected a string")
        self._check_length(value)
        return value.encode("utf-8")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} oid={self.oid}>"


class StringSyntax(Syntax):
    pass


class ExactStringSyntax(Syntax):
    """Strings that have no substring matching rule (OIDs, UUIDs)."""

    name = "Identifier"
    substring = False


class DNSyntax(Syntax):
    """Distinguished names.  Values are checked with :func:`ldap.dn.is_dn`."""

    name = "Distinguished Name"
    substring = False

    def to_db_value(self, value: Any) -> bytes:
        if not isinstance(value, str) or not is_dn(value):
            raise self._invalid(value, "not a distinguished name")
        return super().to_db_value(value)


class BinarySyntax(Syntax):
    """Opaque bytes, passed through unchanged."""

    name = "Octet String"
    python_type = bytes
    substring = False
    binary = True

    def from_db_value(self, value: bytes) -> bytes:
        return bytes(value)

    def to_db_value(self, value: Any) -> bytes:
        if not isinstance(value, (bytes, bytearray)):
            raise self._invalid(value, "expected bytes")
        self._check_length(value)
        return bytes(value)


class BooleanSyntax(Syntax):
    """
    Booleans, stored as the strings ``TRUE`` and ``FALSE``.  We accept any
    case when reading, since not every server is strict about it.
    """

    name = "Boolean"
    python_type = bool
    substring = False

    #: The string value used to represent True in LDAP.
    LDAP_TRUE: ClassVar[str] = "TRUE"
    #: The string value used to represent False in LDAP.
    LDAP_FALSE: ClassVar[str] = "FALSE"

    def from_db_value(self, value: bytes) -> bool:
        db_value = super().from_db_value(value).upper()
        if db_value == self.LDAP_TRUE:
            return True
        if db_value == self.LDAP_FALSE:
            return False
        raise self._invalid(value)

    def to_db_value(self, value: Any) -> bytes:
        if not isinstance(value, bool):
            raise self._invalid(value, "expected True or False")
        db_value = self.LDAP_TRUE if value else self.LDAP_FALSE
        return db_value.encode("utf-8")


class IntegerSyntax(Syntax):
    name = "Integer"
    python_type = int
    substring = False
    ordering = True

    def from_db_value(self, value: bytes) -> int:
        db_value = super().from_db_value(value)
        try:
            return int(db_value)
        except ValueError as e:
            raise self._invalid(value) from e

    def to_db_value(self, value: Any) -> bytes:
        # bool is an int subclass, but True is not an LDAP INTEGER
        if isinstance(value, bool) or not isinstance(value, int):
            raise self._invalid(value, "expected an integer")
        return str(value).encode("utf-8")


class GeneralizedTimeSyntax(Syntax):
    """
    RFC 4517 generalized time.  Values are timezone-aware UTC datetimes; naive
    datetimes handed to us are taken to be in UTC.
    """

    name = "Generalized Time"
    python_type = datetime.datetime
    substring = False
    ordering = True

    #: List of supported LDAP datetime formats.
    LDAP_DATETIME_FORMATS: ClassVar[list[str]] = [
        "%Y%m%d%H%M%SZ",
        "%Y%m%d%H%M%S.%fZ",
        "%Y%m%d%H%M%S%z",
        "%Y%m%d%H%M%S.%f%z",
        "%Y%m%d%H%MZ",
        "%Y%m%d%H%M%z",
    ]

    def from_db_value(self, value: bytes) -> datetime.datetime:
        dt_str = super().from_db_value(value)
        dt: datetime.datetime | None = None
        for fmt in self.LDAP_DATETIME_FORMATS:
            try:
                dt = datetime.datetime.strptime(dt_str, fmt)
            except ValueError:  # noqa: PERF203
                pass
            else:
                break
        if not isinstance(dt, datetime.datetime):
            raise self._invalid(value)
        if dt.tzinfo is None:
            return pytz.utc.localize(dt)
        return dt.astimezone(pytz.utc)

    def to_db_value(self, value: Any) -> bytes:
        if not isinstance(value, datetime.datetime):
            raise self._invalid(value, "expected a datetime")
        if value.tzinfo is None:
            value = pytz.utc.localize(value)
        value = value.astimezone(pytz.utc)
        # strftime doesn't zero-pad years before 1000
        dt_str = f"{value.year:04d}{value:%m%d%H%M%S}"
        if value.microsecond:
            dt_str = f"{dt_str}.{value.microsecond:06d}"
        return f"{dt_str}Z".encode("utf-8")


# RFC 4517 syntax OIDs
SYNTAX_PREFIX: str = "1.3.6.1.4.1.1466.115.121.1."

SYNTAXES: dict[str, type[Syntax]] = {
    f"{SYNTAX_PREFIX}4": BinarySyntax,  # Audio
    f"{SYNTAX_PREFIX}5": BinarySyntax,  # Binary
    f"{SYNTAX_PREFIX}7": BooleanSyntax,
    f"{SYNTAX_PREFIX}8": BinarySyntax,  # Certificate
    f"{SYNTAX_PREFIX}9": BinarySyntax,  # Certificate List
    f"{SYNTAX_PREFIX}10": BinarySyntax,  # Certificate Pair
    f"{SYNTAX_PREFIX}11": StringSyntax,  # Country String
    f"{SYNTAX_PREFIX}12": DNSyntax,
    f"{SYNTAX_PREFIX}15": StringSyntax,  # Directory String
    f"{SYNTAX_PREFIX}24": GeneralizedTimeSyntax,
    f"{SYNTAX_PREFIX}26": StringSyntax,  # IA5 String
    f"{SYNTAX_PREFIX}27": IntegerSyntax,
    f"{SYNTAX_PREFIX}28": BinarySyntax,  # JPEG
    f"{SYNTAX_PREFIX}34": StringSyntax,  # Name and Optional UID
    f"{SYNTAX_PREFIX}36": StringSyntax,  # Numeric String
    f"{SYNTAX_PREFIX}38": ExactStringSyntax,  # OID
    f"{SYNTAX_PREFIX}40": BinarySyntax,  # Octet String
    f"{SYNTAX_PREFIX}44": StringSyntax,  # Printable String
    f"{SYNTAX_PREFIX}50": StringSyntax,  # Telephone Number
    "1.3.6.1.1.16.1": ExactStringSyntax,  # UUID
}


def get_syntax(
    oid: str | None,
    max_length: int | None = None,
    overrides: dict[str, type[Syntax]] | None = None,
) -> Syntax:
    """
    Return the syntax for a SYNTAX OID.

    Args:
        oid: the OID from the attribute type definition, without any ``{n}``
            length suffix

    Keyword Args:
        max_length: the ``{n}`` length bound, if the schema gave one
        overrides: vendor syntaxes, consulted before the standard ones

    Returns:
        A syntax instance.  Unknown OIDs get a :class:`StringSyntax`.

    """
    syntax_class: type[Syntax] | None = None
    if oid:
        if overrides:
            syntax_class = overrides.get(oid)
        if syntax_class is None:
            syntax_class = SYNTAXES.get(oid)
    if syntax_class is None:
        logger.debug("ldapconnector.syntax.unknown oid=%s", oid)
        syntax_class = StringSyntax
    return syntax_class(oid=oid, max_length=max_length)
