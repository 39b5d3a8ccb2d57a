class CallwatchError(Exception):
    """Base exception for the callwatch service."""


class ConfigurationError(CallwatchError):
    """Raised when the rule catalog is missing or malformed at startup."""


class ProviderUnavailable(CallwatchError):
    """Raised when the hosted model cannot be reached or is not installed."""


class ProviderProtocolError(CallwatchError):
    """Raised when the hosted model answers with a payload outside the contract."""


class EvaluationError(CallwatchError):
    """Raised when the deterministic path cannot run (e.g. session lock timeout)."""


class PersistenceError(CallwatchError):
    """Raised when the alert store fails."""
