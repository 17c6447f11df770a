"""
Type aliases for the python-ldap data structures used by the connector.
"""

#: ``(dn, {attribute: [value, ...]})`` as returned by python-ldap searches.
LDAPData = tuple[str, dict[str, list[bytes]]]
#: A single ``modify_s`` change: ``(MOD_*, attribute, values or None)``.
ModifyModListEntry = tuple[int, str, list[bytes] | None]
ModifyModList = list[ModifyModListEntry]
AddModlist = list[tuple[str, list[bytes]]]
#: An out-of-band modification against another entry: ``(dn, modlist)``.
DeferredModification = tuple[str, ModifyModList]
