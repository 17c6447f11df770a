"""
Connector configuration.

An :class:`LdapConfiguration` holds the resolved settings the connector
reads: where the directory is, how to bind, how generic names map onto the
directory, and which vendor quirks to honor.  Build one from keyword
arguments, from a plain dict, or from the ``LDAP_CONNECTORS`` Django
setting::

    LDAP_CONNECTORS = {
        "corp": {
            "url": "ldap://ldap.example.com",
            "bind_dn": "cn=admin,dc=example,dc=com",
            "bind_password": "secret",
            "base_context": "dc=example,dc=com",
            "uid_attribute": "entryUUID",
        }
    }

    configuration = LdapConfiguration.from_settings("corp")

Library-wide tunables are read from optional ``LDAPCONNECTOR_*`` Django
settings; see :func:`get_setting`.
"""

from copy import deepcopy
from typing import Any, ClassVar

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

#: Use the entry's distinguished name as its unique identifier.
PSEUDO_ATTRIBUTE_DN_NAME: str = "dn"
#: Matches every entry in scope.
SEARCH_FILTER_ALL: str = "(objectClass=*)"

SCOPE_BASE: str = "base"
SCOPE_ONE: str = "one"
SCOPE_SUB: str = "sub"
SCOPES: tuple[str, ...] = (SCOPE_BASE, SCOPE_ONE, SCOPE_SUB)

REFERRAL_STRATEGY_FOLLOW: str = "follow"
REFERRAL_STRATEGY_IGNORE: str = "ignore"
REFERRAL_STRATEGY_THROW: str = "throw"
REFERRAL_STRATEGIES: tuple[str, ...] = (
    REFERRAL_STRATEGY_FOLLOW,
    REFERRAL_STRATEGY_IGNORE,
    REFERRAL_STRATEGY_THROW,
)

VENDOR_GENERIC: str = "generic"
VENDOR_EDIRECTORY: str = "edirectory"
VENDORS: tuple[str, ...] = (VENDOR_GENERIC, VENDOR_EDIRECTORY)

SYNC_STRATEGY_SUN_CHANGELOG: str = "sun-changelog"
SYNC_STRATEGIES: tuple[str, ...] = (SYNC_STRATEGY_SUN_CHANGELOG,)

TLS_VERIFY_VALUES: tuple[str, ...] = ("never", "always")


def get_setting(name: str, default: Any) -> Any:
    """
    Get a library-wide tunable from Django settings with fallback.

    The connector is usable without a Django project, so unconfigured
    settings simply yield ``default``.

    Args:
        name: Name of the setting (without the ``LDAPCONNECTOR_`` prefix)
        default: Value to use if the setting is not present

    Returns:
        The configured value or ``default``.

    """
    if not settings.configured:
        return default
    return getattr(settings, f"LDAPCONNECTOR_{name}", default)


class LdapConfiguration:
    """
    The resolved configuration of one connector instance.

    Keyword Args:
        url: LDAP URL of the directory; overrides ``host`` and ``port``
        host: directory host name
        port: directory port
        use_starttls: issue StartTLS before binding
        tls_verify: ``never`` or ``always``
        tls_ca_certfile: path to the CA certificate bundle
        tls_certfile: path to our client certificate
        tls_keyfile: path to our client key
        timeout: network timeout in seconds
        sizelimit: client-side size limit for searches
        bind_dn: DN to bind as; anonymous if unset
        bind_password: password for ``bind_dn``
        base_context: DN under which all searches happen
        uid_attribute: attribute holding the unique identifier, or ``dn``
        referral_strategy: ``follow``, ``ignore`` or ``throw``
        referral_hop_limit: how many referrals deep ``follow`` will chase
        schema_quirks_mode: skip malformed schema definitions instead of failing
        operational_attributes: operational attributes callers may read and filter on
        attribute_aliases: generic attribute name to directory attribute name
        account_object_class: structural class for ``__ACCOUNT__``
        group_object_class: structural class for ``__GROUP__``
        group_member_attribute: membership attribute of ``group_object_class``
        extra_object_classes: auxiliary classes added to every new entry
        password_attribute: directory attribute for ``__PASSWORD__``
        search_page_size: page size for paged searches; unpaged if unset
        changelog_dn: DN of the changelog; read from the root DSE if unset
        changelog_batch_size: changelog entries fetched per round trip
        sync_strategy: which changelog flavor to read
        vendor: ``generic`` or ``edirectory``
        manage_reciprocal_group_attributes: maintain members' back-links (eDirectory)
        manage_equivalence_attributes: mirror members onto ``equivalentToMe`` (eDirectory)
        user_container_dn: default search base for accounts; defaults to
            ``ou=People`` under ``base_context`` for eDirectory
        group_container_dn: default search base for groups; defaults to
            ``ou=Groups`` under ``base_context`` for eDirectory

    Raises:
        ImproperlyConfigured: an unknown key was given

    """

    DEFAULTS: ClassVar[dict[str, Any]] = {
        "url": None,
        "host": "localhost",
        "port": 389,
        "use_starttls": False,
        "tls_verify": "never",
        "tls_ca_certfile": None,
        "tls_certfile": None,
        "tls_keyfile": None,
        "timeout": 15.0,
        "sizelimit": None,
        "bind_dn": None,
        "bind_password": None,
        "base_context": None,
        "uid_attribute": "entryUUID",
        "referral_strategy": REFERRAL_STRATEGY_FOLLOW,
        "referral_hop_limit": 5,
        "schema_quirks_mode": False,
        "operational_attributes": [],
        "attribute_aliases": {},
        "account_object_class": "inetOrgPerson",
        "group_object_class": "groupOfNames",
        "group_member_attribute": "member",
        "extra_object_classes": [],
        "password_attribute": "userPassword",
        "search_page_size": None,
        "changelog_dn": None,
        "changelog_batch_size": 100,
        "sync_strategy": SYNC_STRATEGY_SUN_CHANGELOG,
        "vendor": VENDOR_GENERIC,
        "manage_reciprocal_group_attributes": False,
        "manage_equivalence_attributes": False,
        "user_container_dn": None,
        "group_container_dn": None,
    }

    #: eDirectory identifies entries by their binary ``GUID``.
    EDIRECTORY_UID_ATTRIBUTE: str = "GUID"

    url: str | None
    host: str
    port: int
    use_starttls: bool
    tls_verify: str
    tls_ca_certfile: str | None
    tls_certfile: str | None
    tls_keyfile: str | None
    timeout: float
    sizelimit: int | None
    bind_dn: str | None
    bind_password: str | None
    base_context: str | None
    uid_attribute: str
    referral_strategy: str
    referral_hop_limit: int
    schema_quirks_mode: bool
    operational_attributes: list[str]
    attribute_aliases: dict[str, str]
    account_object_class: str
    group_object_class: str
    group_member_attribute: str
    extra_object_classes: list[str]
    password_attribute: str
    search_page_size: int | None
    changelog_dn: str | None
    changelog_batch_size: int
    sync_strategy: str
    vendor: str
    manage_reciprocal_group_attributes: bool
    manage_equivalence_attributes: bool
    user_container_dn: str | None
    group_container_dn: str | None

    def __init__(self, **kwargs) -> None:
        unknown = sorted(set(kwargs) - set(self.DEFAULTS))
        if unknown:
            msg = f"Unknown LDAP connector settings: {', '.join(unknown)}"
            raise ImproperlyConfigured(msg)
        for key, default in self.DEFAULTS.items():
            setattr(self, key, kwargs.get(key, deepcopy(default)))
        #: The keys the caller set explicitly; :meth:`recompute` leaves these alone.
        self.explicit: frozenset[str] = frozenset(kwargs)
        self.recompute()

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> "LdapConfiguration":
        """
        Build and validate a configuration from a plain dict.

        Args:
            values: the settings, keyed as in the class docstring

        Raises:
            ImproperlyConfigured: the settings are incomplete or inconsistent

        Returns:
            A validated configuration.

        """
        configuration = cls(**values)
        configuration.validate()
        return configuration

    @classmethod
    def from_settings(cls, key: str) -> "LdapConfiguration":
        """
        Build and validate a configuration from ``settings.LDAP_CONNECTORS[key]``.

        Args:
            key: the name of the connector in ``settings.LDAP_CONNECTORS``

        Raises:
            ImproperlyConfigured: ``LDAP_CONNECTORS`` is missing, has no such
                key, or the settings under it are invalid

        Returns:
            A validated configuration.

        """
        try:
            connectors = settings.LDAP_CONNECTORS
        except AttributeError as e:
            msg = "settings.LDAP_CONNECTORS is not defined"
            raise ImproperlyConfigured(msg) from e
        try:
            values = connectors[key]
        except KeyError as e:
            msg = f'settings.LDAP_CONNECTORS has no key "{key}"'
            raise ImproperlyConfigured(msg) from e
        return cls.from_dict(values)

    @property
    def server_url(self) -> str:
        """The LDAP URL to connect to."""
        if self.url:
            return self.url
        return f"ldap://{self.host}:{self.port}"

    @property
    def uid_is_dn(self) -> bool:
        """``True`` if entries are identified by their distinguished name."""
        return self.uid_attribute.lower() == PSEUDO_ATTRIBUTE_DN_NAME

    @property
    def is_edirectory(self) -> bool:
        return self.vendor == VENDOR_EDIRECTORY

    def recompute(self) -> None:
        """
        Fill in settings that default to values derived from other settings.
        """
        if not self.is_edirectory:
            return
        if "uid_attribute" not in self.explicit:
            self.uid_attribute = self.EDIRECTORY_UID_ATTRIBUTE
        if self.base_context:
            if not self.user_container_dn:
                self.user_container_dn = f"ou=People,{self.base_context}"
            if not self.group_container_dn:
                self.group_container_dn = f"ou=Groups,{self.base_context}"

    def validate(self) -> None:  # noqa: PLR0912
        """
        Check the configuration for completeness and consistency.

        Raises:
            ImproperlyConfigured: a setting is missing or has an invalid value

        """
        if not self.base_context:
            msg = "base_context is required"
            raise ImproperlyConfigured(msg)
        if not self.url and not self.host:
            msg = "Either url or host is required"
            raise ImproperlyConfigured(msg)
        if self.bind_dn and self.bind_password is None:
            msg = f"bind_password is required when bind_dn is set ({self.bind_dn})"
            raise ImproperlyConfigured(msg)
        if not self.uid_attribute:
            msg = "uid_attribute must not be empty"
            raise ImproperlyConfigured(msg)
        if self.referral_strategy not in REFERRAL_STRATEGIES:
            msg = (
                f"Invalid referral_strategy value: {self.referral_strategy}. "
                f"Must be one of {', '.join(REFERRAL_STRATEGIES)}"
            )
            raise ImproperlyConfigured(msg)
        if self.tls_verify not in TLS_VERIFY_VALUES:
            msg = f"Invalid tls_verify value: {self.tls_verify}"
            raise ImproperlyConfigured(msg)
        if self.vendor not in VENDORS:
            msg = f"Invalid vendor value: {self.vendor}"
            raise ImproperlyConfigured(msg)
        if self.sync_strategy not in SYNC_STRATEGIES:
            msg = f"Invalid sync_strategy value: {self.sync_strategy}"
            raise ImproperlyConfigured(msg)
        if self.referral_hop_limit < 1:
            msg = f"referral_hop_limit ({self.referral_hop_limit}) must be positive"
            raise ImproperlyConfigured(msg)
        if self.search_page_size is not None and self.search_page_size < 1:
            msg = f"search_page_size ({self.search_page_size}) must be positive"
            raise ImproperlyConfigured(msg)
        if self.changelog_batch_size < 1:
            msg = (
                f"changelog_batch_size ({self.changelog_batch_size}) must be positive"
            )
            raise ImproperlyConfigured(msg)
        if not isinstance(self.attribute_aliases, dict):
            msg = "attribute_aliases must be a dict"
            raise ImproperlyConfigured(msg)

    def __repr__(self) -> str:
        return (
            f"<LdapConfiguration url={self.server_url} "
            f"base_context={self.base_context} vendor={self.vendor}>"
        )
