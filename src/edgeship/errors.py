"""Edgeship exception hierarchy.

All Edgeship-specific exceptions inherit from EdgeshipError,
enabling structured error handling and cleaner catch clauses.
"""


class EdgeshipError(Exception):
    """Base exception for all Edgeship errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ConfigError(EdgeshipError):
    """Invalid or missing configuration."""


class BuildError(EdgeshipError):
    """The build toolchain could not be invoked at all."""


class FixError(EdgeshipError):
    """A fix action could not be applied."""


class PackagingError(EdgeshipError):
    """Packaged bundle violates a hosting constraint."""


class DeploymentError(EdgeshipError):
    """A deployment step failed."""

    def __init__(self, message: str = "", *, step: str = "", retryable: bool = False) -> None:
        super().__init__(message, retryable=retryable)
        self.step = step


class ProviderAPIError(DeploymentError):
    """Non-success response from the hosting provider or object storage."""

    def __init__(self, message: str = "", *, step: str = "", status_code: int = 0) -> None:
        retryable = status_code == 429 or status_code >= 500
        super().__init__(message, step=step, retryable=retryable)
        self.status_code = status_code
