"""
Runtime configuration for OpenAgency.
"""

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from .providers.base import Provider

LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}


@dataclass
class AgencyConfig:
    """Configuration shared by every agent in a delegation tree.

    Attributes:
        model: Model identifier used when creating remote assistants.
        api_key: API key for the remote backend. Falls back to
            ``OPENAI_API_KEY`` when left unset.
        base_url: Optional override of the backend endpoint.
        poll_interval: Seconds between run status polls.
        queued_poll_interval: Seconds between polls while a run is queued.
        run_timeout: Upper bound in seconds for one run, or None for no limit.
        memory_dir: Directory holding the ``<tree>.mem`` memory files.
        memory_watch_interval: Seconds between checks of the memory file.
        log_level: Logging level name used by the console runner.
        provider_factory: Callable building a fresh provider for an agent
            that was constructed without one.
    """

    model: str = "gpt-4o"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    poll_interval: float = 0.5
    queued_poll_interval: float = 5.0
    run_timeout: Optional[float] = None
    memory_dir: str = "agencies"
    memory_watch_interval: float = 5.0
    log_level: str = "info"
    provider_factory: Optional[Callable[[], "Provider"]] = None

    def __post_init__(self):
        if self.api_key is None:
            self.api_key = os.environ.get("OPENAI_API_KEY")

        if not self.model:
            raise ConfigurationError("model cannot be empty")

        for option in ("poll_interval", "queued_poll_interval", "memory_watch_interval"):
            value = getattr(self, option)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                raise ConfigurationError(f"{option} must be a positive number, got {value!r}")

        if self.run_timeout is not None and self.run_timeout <= 0:
            raise ConfigurationError(
                f"run_timeout must be positive or None, got {self.run_timeout!r}"
            )

        self.log_level = self.log_level.lower()
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(
                f"log_level must be one of {sorted(LOG_LEVELS)}, got {self.log_level!r}"
            )

    @classmethod
    def from_env(cls) -> "AgencyConfig":
        """Create configuration from environment variables."""
        run_timeout = os.environ.get("OPENAGENCY_RUN_TIMEOUT")
        try:
            return cls(
                model=os.environ.get("OPENAGENCY_MODEL", "gpt-4o"),
                api_key=os.environ.get("OPENAI_API_KEY"),
                base_url=os.environ.get("OPENAGENCY_BASE_URL") or None,
                poll_interval=float(os.environ.get("OPENAGENCY_POLL_INTERVAL", "0.5")),
                queued_poll_interval=float(
                    os.environ.get("OPENAGENCY_QUEUED_POLL_INTERVAL", "5.0")
                ),
                run_timeout=float(run_timeout) if run_timeout else None,
                memory_dir=os.environ.get("OPENAGENCY_MEMORY_DIR", "agencies"),
                memory_watch_interval=float(
                    os.environ.get("OPENAGENCY_MEMORY_WATCH_INTERVAL", "5.0")
                ),
                log_level=os.environ.get("OPENAGENCY_LOG_LEVEL", "info"),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting in environment: {e}") from e

    def create_provider(self) -> Optional["Provider"]:
        """Build a provider through ``provider_factory``, if one is configured."""
        if self.provider_factory is None:
            return None
        return self.provider_factory()
