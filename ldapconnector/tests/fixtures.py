# mypy: disable-error-code="attr-defined"
# type: ignore
"""
Shared test data: a small subschema in the shape a server returns it, and
helpers for building translators and mock connections around it.
"""

from typing import Any
from unittest.mock import MagicMock

from ldapconnector import ldap
from ldapconnector.config import LdapConfiguration
from ldapconnector.connection import DirectoryConnection
from ldapconnector.schema import SchemaTranslator

ATTRIBUTE_TYPES = [
    b"( 2.5.4.0 NAME 'objectClass' EQUALITY objectIdentifierMatch "
    b"SYNTAX 1.3.6.1.4.1.1466.115.121.1.38 )",
    b"( 2.5.4.41 NAME 'name' EQUALITY caseIgnoreMatch SUBSTR caseIgnoreSubstringsMatch "
    b"SYNTAX 1.3.6.1.4.1.1466.115.121.1.15{32768} )",
    b"( 2.5.4.3 NAME ( 'cn' 'commonName' ) SUP name )",
    b"( 2.5.4.4 NAME ( 'sn' 'surname' ) SUP name )",
    b"( 2.5.4.11 NAME ( 'ou' 'organizationalUnitName' ) SUP name )",
    b"( 2.5.4.13 NAME 'description' SYNTAX 1.3.6.1.4.1.1466.115.121.1.15{1024} )",
    b"( 2.5.4.20 NAME 'telephoneNumber' SYNTAX 1.3.6.1.4.1.1466.115.121.1.50{32} )",
    b"( 2.5.4.35 NAME 'userPassword' SYNTAX 1.3.6.1.4.1.1466.115.121.1.40{128} )",
    b"( 2.5.4.49 NAME 'distinguishedName' SYNTAX 1.3.6.1.4.1.1466.115.121.1.12 )",
    b"( 2.5.4.31 NAME 'member' SUP distinguishedName )",
    b"( 0.9.2342.19200300.100.1.1 NAME ( 'uid' 'userid' ) "
    b"SYNTAX 1.3.6.1.4.1.1466.115.121.1.15{256} )",
    b"( 0.9.2342.19200300.100.1.3 NAME ( 'mail' 'rfc822Mailbox' ) "
    b"SYNTAX 1.3.6.1.4.1.1466.115.121.1.26{256} )",
    b"( 0.9.2342.19200300.100.1.60 NAME 'jpegPhoto' "
    b"SYNTAX 1.3.6.1.4.1.1466.115.121.1.28 )",
    b"( 2.16.840.1.113730.3.1.3 NAME 'employeeNumber' "
    b"SYNTAX 1.3.6.1.4.1.1466.115.121.1.15 SINGLE-VALUE )",
    b"( 1.3.6.1.1.1.1.0 NAME 'uidNumber' SYNTAX 1.3.6.1.4.1.1466.115.121.1.27 "
    b"SINGLE-VALUE )",
    b"( 1.3.6.1.4.1.99999.1.1 NAME 'accountActive' "
    b"SYNTAX 1.3.6.1.4.1.1466.115.121.1.7 SINGLE-VALUE )",
    b"( 1.3.6.1.1.16.4 NAME 'entryUUID' SYNTAX 1.3.6.1.1.16.1 SINGLE-VALUE "
    b"NO-USER-MODIFICATION USAGE directoryOperation )",
    b"( 2.5.18.1 NAME 'createTimestamp' SYNTAX 1.3.6.1.4.1.1466.115.121.1.24 "
    b"SINGLE-VALUE NO-USER-MODIFICATION USAGE directoryOperation )",
]

OBJECT_CLASSES = [
    b"( 2.5.6.0 NAME 'top' ABSTRACT MUST objectClass )",
    b"( 2.5.6.6 NAME 'person' SUP top STRUCTURAL MUST ( sn $ cn ) "
    b"MAY ( userPassword $ telephoneNumber $ description ) )",
    b"( 2.16.840.1.113730.3.2.2 NAME 'inetOrgPerson' SUP person STRUCTURAL "
    b"MAY ( mail $ uid $ employeeNumber $ jpegPhoto ) )",
    b"( 2.5.6.9 NAME 'groupOfNames' SUP top STRUCTURAL MUST ( member $ cn ) "
    b"MAY description )",
    b"( 2.5.6.5 NAME 'organizationalUnit' SUP top STRUCTURAL MUST ou "
    b"MAY description )",
    b"( 1.3.6.1.4.1.99999.2.1 NAME 'activeAccount' SUP top AUXILIARY "
    b"MAY ( accountActive $ uidNumber ) )",
]

#: The eDirectory-only parts of the schema.
EDIRECTORY_ATTRIBUTE_TYPES = [
    b"( 2.16.840.1.113719.1.1.4.1.46 NAME 'loginDisabled' "
    b"SYNTAX 1.3.6.1.4.1.1466.115.121.1.7 SINGLE-VALUE )",
    b"( 2.16.840.1.113719.1.1.4.1.81 NAME 'lockedByIntruder' "
    b"SYNTAX 1.3.6.1.4.1.1466.115.121.1.7 SINGLE-VALUE )",
    b"( 2.16.840.1.113719.1.1.4.1.82 NAME 'loginIntruderResetTime' "
    b"SYNTAX 1.3.6.1.4.1.1466.115.121.1.24 SINGLE-VALUE )",
    b"( 2.16.840.1.113719.1.1.4.1.25 NAME 'groupMembership' "
    b"SYNTAX 1.3.6.1.4.1.1466.115.121.1.12 )",
    b"( 2.16.840.1.113719.1.1.4.1.23 NAME 'equivalentToMe' "
    b"SYNTAX 1.3.6.1.4.1.1466.115.121.1.12 )",
    b"( 2.16.840.1.113719.1.1.4.1.501 NAME 'GUID' "
    b"SYNTAX 1.3.6.1.4.1.1466.115.121.1.40{16} SINGLE-VALUE )",
    b"( 2.16.840.1.113719.1.1.4.1.77 NAME 'loginIntruderAttempts' "
    b"SYNTAX 2.16.840.1.113719.1.1.5.1.22 SINGLE-VALUE )",
]

EDIRECTORY_OBJECT_CLASSES = [
    b"( 2.5.6.0 NAME 'top' ABSTRACT MUST objectClass "
    b"MAY ( GUID $ equivalentToMe ) )",
    b"( 2.5.6.6 NAME 'person' SUP top STRUCTURAL MUST ( sn $ cn ) "
    b"MAY ( userPassword $ telephoneNumber $ description $ loginDisabled $ "
    b"lockedByIntruder $ loginIntruderResetTime $ loginIntruderAttempts $ "
    b"groupMembership ) )",
    b"( 2.16.840.1.113730.3.2.2 NAME 'inetOrgPerson' SUP person STRUCTURAL "
    b"MAY ( mail $ uid $ employeeNumber $ jpegPhoto ) )",
    b"( 2.5.6.9 NAME 'groupOfNames' SUP top STRUCTURAL MUST ( member $ cn ) "
    b"MAY description )",
]

BASE_DN = "dc=example,dc=com"
PEOPLE_DN = f"ou=people,{BASE_DN}"
GROUPS_DN = f"ou=groups,{BASE_DN}"


def subschema(edirectory: bool = False) -> dict[str, list[bytes]]:
    if edirectory:
        return {
            "attributeTypes": ATTRIBUTE_TYPES + EDIRECTORY_ATTRIBUTE_TYPES,
            "objectClasses": EDIRECTORY_OBJECT_CLASSES,
        }
    return {"attributeTypes": ATTRIBUTE_TYPES, "objectClasses": OBJECT_CLASSES}


def make_configuration(**kwargs) -> LdapConfiguration:
    values: dict[str, Any] = {
        "url": "ldap://ldap.example.com",
        "bind_dn": "cn=admin,dc=example,dc=com",
        "bind_password": "admin",
        "base_context": BASE_DN,
    }
    values.update(kwargs)
    return LdapConfiguration.from_dict(values)


def make_translator(configuration: LdapConfiguration | None = None, **kwargs) -> SchemaTranslator:
    configuration = configuration or make_configuration(**kwargs)
    translator = SchemaTranslator(configuration)
    translator.load_schema(make_connection(configuration))
    return translator


def make_connection(
    configuration: LdapConfiguration | None = None, edirectory: bool = False
) -> MagicMock:
    """
    A mock :class:`DirectoryConnection` that serves :func:`subschema` and
    reports itself connected.
    """
    connection = MagicMock(spec=DirectoryConnection)
    connection.configuration = configuration
    connection.url = "ldap://ldap.example.com"
    connection.is_connected = True
    connection.read_subschema.return_value = subschema(edirectory=edirectory)
    connection.root_dse.return_value = {}
    return connection


def search_messages(*messages: tuple[int, list]) -> list[tuple]:
    """
    Build ``result3`` return values: each of ``messages`` is ``(rtype,
    rdata)``, and a final empty ``RES_SEARCH_RESULT`` is appended.
    """
    results = [(rtype, rdata, 1, []) for rtype, rdata in messages]
    results.append((ldap.RES_SEARCH_RESULT, [], 1, []))
    return results


def entry(dn: str, **attrs: Any) -> tuple[str, dict[str, list[bytes]]]:
    """Build a python-ldap style entry, encoding ``str`` values."""
    encoded = {}
    for name, values in attrs.items():
        if not isinstance(values, list):
            values = [values]
        encoded[name] = [v.encode("utf-8") if isinstance(v, str) else v for v in values]
    return dn, encoded
