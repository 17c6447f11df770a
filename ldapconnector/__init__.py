"""
An LDAP connector for identity management: it exposes a directory's
accounts and groups as generic identity objects and supports searching,
create, update, delete and changelog-based sync.
"""

__version__ = "1.0.0"
