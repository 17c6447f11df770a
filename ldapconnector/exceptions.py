"""
Exceptions raised by the LDAP connector.

Every error the connector raises derives from :class:`ConnectorError`.
python-ldap's own exceptions never escape the package: they are translated
in :mod:`ldapconnector.connection` and chained as ``__cause__``.
"""


class ConnectorError(Exception):
    """Base class for all connector errors."""


class ConnectivityError(ConnectorError):
    """
    The directory could not be reached, or refused our bind.

    Fatal for the current call.  The connector never retries internally.
    """


class SchemaError(ConnectorError):
    """
    The directory schema is malformed or ambiguous, or the connector's
    configuration disagrees with it (e.g. a unique identifier that matches
    more than one entry).
    """


class UnknownMappingError(ConnectorError):
    """A generic name could not be mapped onto the directory."""


class UnknownObjectClassError(UnknownMappingError):
    """No structural object class matches the requested object class."""


class UnknownAttributeError(UnknownMappingError):
    """The attribute is not legal for the object class and is not aliased."""


class UnsupportedFilterError(UnknownMappingError):
    """A filter node cannot be expressed for the target attribute's syntax."""


class InvalidValueError(ConnectorError):
    """A value failed conversion to or from its directory syntax."""


class InvalidStateError(ConnectorError):
    """
    The directory returned something we can't work with, e.g. an entry whose
    identifier attribute is missing or multi-valued after a create.
    """


class NotFoundError(ConnectorError):
    """An identifier or address resolved to no entry."""


class ReferralError(ConnectorError):
    """
    The directory answered with a referral and the referral policy is
    ``throw``.

    Args:
        message: the error message

    Keyword Args:
        urls: the referral URLs the directory sent us

    """

    def __init__(self, message: str, urls: list[str] | None = None) -> None:
        super().__init__(message)
        self.urls: list[str] = urls or []


class ReferralHopLimitError(ReferralError):
    """Following a referral would chase more hops than the configuration allows."""


class TokenExpiredError(ConnectorError):
    """The changelog no longer holds the position a sync token points at."""


class DirectoryIOError(ConnectorError):
    """Any other protocol-level failure reported by the directory."""


class AlreadyExistsError(DirectoryIOError):
    """An entry already exists at the requested address."""


class LimitExceededError(DirectoryIOError):
    """The directory stopped a search at its size or time limit."""


class PartialUpdateError(DirectoryIOError):
    """
    An update failed after some of its steps had already been applied.

    Directory operations are not transactional: if the rename succeeded but the
    following modification failed, the entry is left renamed.  The caller has
    to know that.

    Args:
        message: the error message

    Keyword Args:
        completed: names of the steps that were applied before the failure
        dn: the entry's address after the applied steps

    """

    def __init__(
        self, message: str, completed: list[str] | None = None, dn: str | None = None
    ) -> None:
        super().__init__(message)
        self.completed: list[str] = completed or []
        self.dn = dn


class UnsupportedOperationError(ConnectorError):
    """The directory flavor cannot perform the requested change."""
