"""
OpenAgency - Custom exceptions for error handling.
"""

from typing import Any, Optional


class OpenAgencyError(Exception):
    """Base exception for all OpenAgency errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response


class ConfigurationError(OpenAgencyError):
    """Raised when a configuration option has an invalid value."""

    pass


class ValidationError(OpenAgencyError):
    """Raised when input validation fails."""

    def __init__(self, message: str, errors: Optional[list[Any]] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.errors = errors or []


class ProviderError(OpenAgencyError):
    """Raised when the remote execution backend fails or misbehaves."""

    pass


class ProviderNotConfiguredError(ProviderError):
    """Raised when an agent is initialised without a provider."""

    pass


class RunFailedError(ProviderError):
    """Raised when a remote run ends in a failed, cancelled or expired state."""

    def __init__(
        self,
        message: str,
        status: Optional[str] = None,
        run_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status = status
        self.run_id = run_id


class RunCancelledError(ProviderError):
    """Raised when the caller cancels a run that is still being polled."""

    pass


class RunTimeoutError(ProviderError):
    """Raised when a run does not finish within the configured timeout."""

    pass


class UnsupportedActionError(ProviderError):
    """Raised when a run requires an action the provider cannot perform."""

    def __init__(self, message: str, action: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.action = action


class CapabilityError(OpenAgencyError):
    """Raised when a capability cannot be invoked."""

    def __init__(self, message: str, capability: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.capability = capability


class MissingParameterError(CapabilityError):
    """Raised when a required parameter has neither a value nor a default."""

    def __init__(self, message: str, parameter: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.parameter = parameter


class DefinitionError(OpenAgencyError):
    """Base exception for agent definition errors."""

    pass


class DefinitionNotFoundError(DefinitionError):
    """Raised when an agent definition file is not found."""

    pass


class DefinitionValidationError(DefinitionError):
    """Raised when an agent definition is invalid."""

    def __init__(self, message: str, path: str = "", suggestion: str = ""):
        self.path = path
        self.suggestion = suggestion
        full_message = message
        if path:
            full_message = f"{path}: {message}"
        if suggestion:
            full_message = f"{full_message}\n  Hint: {suggestion}"
        super().__init__(full_message)
