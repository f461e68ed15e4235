"""Exception types raised by eligibility-scoring."""


class EligibilityError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(EligibilityError, ValueError):
    """A criteria, rule, group or settings definition is invalid.

    Raised while definitions are built or loaded, before any evaluation starts.
    """


class ImmutableSnapshotError(EligibilityError, TypeError):
    """An attempt was made to modify a Snapshot."""


class CriteriaNotFoundError(EligibilityError, LookupError):
    """No criteria is registered under the requested identifier."""


class VersionNotFoundError(EligibilityError, LookupError):
    """The requested criteria version does not exist."""
