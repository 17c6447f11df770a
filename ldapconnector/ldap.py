# Every module in this package imports python-ldap through here, so that
# python-ldap-faker can swap in its fake directory for the whole package by
# patching a single name.
import ldap
from ldap import *  # noqa: F403

__version__ = ldap.__version__
