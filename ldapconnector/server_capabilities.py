"""
LDAP server capability detection and caching.

This module provides the LdapServerCapabilities class for detecting the
server flavor, the controls it supports and where it keeps its changelog.
"""

import logging
import threading
import time
from typing import TYPE_CHECKING, Any, ClassVar

from django.core.exceptions import ImproperlyConfigured

from .config import get_setting
from .exceptions import ConnectivityError, ConnectorError

if TYPE_CHECKING:
    from .connection import DirectoryConnection

logger = logging.getLogger(__name__)


class LdapServerCapabilities:
    """
    Handles detection and caching of LDAP server capabilities.

    Everything here comes from one read of the root DSE, made at most once per
    server per cache TTL.  The cache is keyed by server URL.
    """

    #: Class-level cache for server information per server URL
    _server_cache: ClassVar[dict[str, dict[str, Any]]] = {}
    #: Thread lock for cache access
    _lock = threading.Lock()

    # Constants for known controls
    PAGING_OID = "1.2.840.113556.1.4.319"

    ROOT_DSE_ATTRIBUTES: ClassVar[list[str]] = [
        "vendorName",
        "vendorVersion",
        "forestFunctionality",
        "supportedControl",
        "subschemaSubentry",
        "changelog",
    ]

    # Cache structure:
    # {
    #   url: {
    #     "root_dse": dict,           # Raw Root DSE response
    #     "flavor": str,              # "openldap", "active_directory", "389",
    #                                 # "edirectory", "unknown"
    #     "controls": set[str],       # Supported control OIDs
    #     "changelog_dn": str|None,   # Where the changelog lives, if anywhere
    #     "cached_at": float          # Timestamp for TTL checking
    #   }
    # }

    @classmethod
    def _get_cache_ttl(cls) -> int:
        """
        Get cache TTL from settings or use fallback.

        Raises:
            ImproperlyConfigured: ``LDAPCONNECTOR_CACHE_TTL`` is not positive

        """
        ttl = get_setting("CACHE_TTL", 3600)  # 1 hour default
        if ttl <= 0:
            msg = f"LDAPCONNECTOR_CACHE_TTL ({ttl}) must be positive"
            raise ImproperlyConfigured(msg)
        return ttl

    @classmethod
    def _is_cache_valid(cls, cached_info: dict[str, Any]) -> bool:
        """
        Check if cached information is still valid based on TTL.

        Args:
            cached_info: Cached server information

        Returns:
            True if cache is still valid, False otherwise

        """
        if "cached_at" not in cached_info:
            return False
        return (time.time() - cached_info["cached_at"]) < cls._get_cache_ttl()

    @classmethod
    def _get_server_info(cls, connection: "DirectoryConnection") -> dict[str, Any]:
        """
        Get server information from the Root DSE, querying only once per server.

        Args:
            connection: an open connection to the server

        Returns:
            Cached server information dictionary

        Raises:
            ConnectivityError: Propagated up

        """
        with cls._lock:
            cache_key = connection.url
            if cache_key in cls._server_cache:
                cached_info = cls._server_cache[cache_key]
                if cls._is_cache_valid(cached_info):
                    return cached_info

            try:
                root_dse = connection.root_dse(cls.ROOT_DSE_ATTRIBUTES)
            except ConnectivityError:
                raise
            except ConnectorError as e:
                # Some servers hide their root DSE; assume the least
                logger.warning(
                    "LDAP error while querying Root DSE for server '%s': %s",
                    cache_key,
                    e,
                )
                return cls._parse_server_info({})

            server_info = cls._parse_server_info(root_dse)
            cls._server_cache[cache_key] = server_info
            return server_info

    @classmethod
    def _decode_all(cls, root_dse: dict[str, Any], name: str) -> list[str]:
        for key, values in root_dse.items():
            if key.lower() == name.lower():
                return [v.decode("utf-8", errors="ignore") for v in values]
        return []

    @classmethod
    def _parse_server_info(cls, root_dse: dict[str, Any]) -> dict[str, Any]:
        """
        Parse Root DSE attributes to determine server capabilities.

        Args:
            root_dse: Raw Root DSE attributes

        Returns:
            Parsed server information dictionary

        """
        changelog = cls._decode_all(root_dse, "changelog")
        return {
            "root_dse": root_dse,
            "flavor": cls._detect_server_flavor(root_dse),
            "controls": set(cls._decode_all(root_dse, "supportedControl")),
            "changelog_dn": changelog[0] if changelog else None,
            "cached_at": time.time(),
        }

    @classmethod
    def _detect_server_flavor(cls, root_dse: dict[str, Any]) -> str:
        """
        Detect server flavor with priority ordering.

        Priority:
        1. Active Directory (forestFunctionality is definitive)
        2. eDirectory (Novell or NetIQ vendor name)
        3. 389 Directory Server and its relatives (vendor name)
        4. OpenLDAP (vendor name)
        5. Unknown (fallback)
        """
        if cls._decode_all(root_dse, "forestFunctionality"):
            return "active_directory"

        vendor_names = cls._decode_all(root_dse, "vendorName")
        if not vendor_names:
            return "unknown"
        vendor_name = vendor_names[0]

        if "Novell" in vendor_name or "NetIQ" in vendor_name:
            return "edirectory"
        if (
            "Fedora Project" in vendor_name
            or "Red Hat" in vendor_name
            or "Oracle" in vendor_name
            or "ForgeRock" in vendor_name
            or "389" in vendor_name
        ):
            return "389"
        if "OpenLDAP Foundation" in vendor_name:
            return "openldap"
        return vendor_name

    @classmethod
    def check_control_support(
        cls, connection: "DirectoryConnection", oid: str, feature_name: str
    ) -> bool:
        """
        Check if the server supports a specific control.

        Args:
            connection: an open connection to the server
            oid: Control OID to check
            feature_name: Human-readable feature name for logging

        Returns:
            True if the control is supported, False otherwise

        Raises:
            ConnectivityError: Propagated up

        """
        is_supported = oid in cls._get_server_info(connection)["controls"]
        logger.debug(
            "ldapconnector.capabilities url=%s feature=%s supported=%s",
            connection.url,
            feature_name,
            is_supported,
        )
        return is_supported

    @classmethod
    def check_server_paging_support(cls, connection: "DirectoryConnection") -> bool:
        """
        Check if the server supports simple paged results.

        Raises:
            ConnectivityError: Propagated up

        """
        return cls.check_control_support(connection, cls.PAGING_OID, "paged results")

    @classmethod
    def detect_server_flavor(cls, connection: "DirectoryConnection") -> str:
        """
        Detect the LDAP server flavor.

        Args:
            connection: an open connection to the server

        Returns:
            "openldap", "active_directory", "389", "edirectory", the vendor
            name, or "unknown"

        Raises:
            ConnectivityError: Propagated up

        """
        return cls._get_server_info(connection)["flavor"]

    @classmethod
    def get_changelog_dn(cls, connection: "DirectoryConnection") -> str | None:
        """
        Return the DN of the server's changelog, as advertised in the root DSE.

        Raises:
            ConnectivityError: Propagated up

        """
        return cls._get_server_info(connection)["changelog_dn"]

    @classmethod
    def refresh(cls, connection: "DirectoryConnection") -> None:
        """
        Re-read the root DSE now and replace what is cached for the server.
        Unlike the lookups above, a root DSE that can't be read is an error.

        Raises:
            ConnectorError: the root DSE can't be read

        """
        root_dse = connection.root_dse(cls.ROOT_DSE_ATTRIBUTES)
        with cls._lock:
            cls._server_cache[connection.url] = cls._parse_server_info(root_dse)

    @classmethod
    def clear_cache(cls, url: str | None = None) -> None:
        """
        Clear cache for a specific server or all servers.

        Args:
            url: Server URL to clear, or None to clear all

        """
        with cls._lock:
            if url is None:
                cls._server_cache.clear()
            else:
                cls._server_cache.pop(url, None)
