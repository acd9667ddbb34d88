"""Configuration for memloop.

Dataclass-based configuration read from the process environment.
Override via environment variables with the MEMLOOP_ prefix; a .env file in
the working directory is loaded by load_config().
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv

from memloop.log_config import get_logger

log = get_logger("config")

DEFAULT_MEMORY_URL = "http://localhost:8420"
DEFAULT_ECHO_URL = "http://localhost:3000"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETENTION_SECONDS = 3600.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 600.0
SYSTEM_USER_ID = "system"


class ConfigurationError(Exception):
    """A required setting is missing or malformed."""


class DeploymentMode(str, Enum):
    """How the bridge authenticates against the backends.

    DIRECT uses service credentials and may talk to the REST database
    interface. PROXIED uses a personal API key against the memory backend
    only, so tools that need REST access are not exposed.
    """

    DIRECT = "direct"
    PROXIED = "proxied"


def _clean(value: str | None) -> str | None:
    """Strip whitespace and one layer of surrounding quotes."""
    if value is None:
        return None
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1].strip()
    return value or None


def _get_env(key: str, default: str | None = None) -> str | None:
    """Get environment variable with MEMLOOP_ prefix."""
    value = _clean(os.getenv(f"MEMLOOP_{key}"))
    return default if value is None else value


def _get_env_float(key: str, default: float) -> float:
    raw = _get_env(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"MEMLOOP_{key} must be a number, got {raw!r}") from e


def _get_env_mode() -> DeploymentMode:
    raw = (_get_env("MODE", DeploymentMode.DIRECT.value) or "").lower()
    try:
        return DeploymentMode(raw)
    except ValueError as e:
        choices = ", ".join(m.value for m in DeploymentMode)
        raise ConfigurationError(f"MEMLOOP_MODE must be one of: {choices} (got {raw!r})") from e


@dataclass
class Config:
    """memloop configuration.

    Attributes:
        mode: direct (service credentials) or proxied (personal API key)
        memory_url: Memory backend base URL
        echo_url: Echo fallback backend base URL
        rest_url: REST database interface base URL (direct mode only)
        token: Service credential for the memory backend and REST interface
        echo_token: Credential for the echo backend
        api_key: Personal API key (proxied mode)
        user_id: Caller identity; "system" is used when unset
        request_timeout: Outbound HTTP timeout in seconds
        retention_seconds: How long correlation records are kept
        sweep_interval_seconds: How often expired records are swept
    """

    mode: DeploymentMode = field(default_factory=_get_env_mode)
    memory_url: str = field(default_factory=lambda: _get_env("MEMORY_URL", DEFAULT_MEMORY_URL))
    echo_url: str = field(default_factory=lambda: _get_env("ECHO_URL", DEFAULT_ECHO_URL))
    rest_url: str | None = field(default_factory=lambda: _get_env("REST_URL"))
    token: str | None = field(default_factory=lambda: _get_env("TOKEN"))
    echo_token: str | None = field(default_factory=lambda: _get_env("ECHO_TOKEN"))
    api_key: str | None = field(default_factory=lambda: _get_env("API_KEY"))
    user_id: str | None = field(default_factory=lambda: _get_env("USER_ID"))
    request_timeout: float = field(
        default_factory=lambda: _get_env_float("TIMEOUT", DEFAULT_TIMEOUT_SECONDS)
    )
    retention_seconds: float = field(
        default_factory=lambda: _get_env_float("RETENTION_SECONDS", DEFAULT_RETENTION_SECONDS)
    )
    sweep_interval_seconds: float = field(
        default_factory=lambda: _get_env_float("SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS)
    )

    def __post_init__(self):
        if isinstance(self.mode, str):
            self.mode = DeploymentMode(self.mode)
        log.debug(
            f"Config: mode={self.mode.value}, memory_url={self.memory_url}, "
            f"echo_url={self.echo_url}, rest_url={self.rest_url}, "
            f"user_id={self.user_id or SYSTEM_USER_ID}, timeout={self.request_timeout}s"
        )

    @property
    def effective_user_id(self) -> str:
        """Caller identity sent to the backends."""
        return self.user_id or SYSTEM_USER_ID

    @property
    def memory_credential(self) -> str | None:
        """Bearer credential for the memory backend in the current mode."""
        if self.mode is DeploymentMode.PROXIED:
            return self.api_key
        return self.token

    @property
    def rest_enabled(self) -> bool:
        return self.mode is DeploymentMode.DIRECT and bool(self.rest_url and self.token)

    def validate(self) -> None:
        """Check that the credentials required by the mode are present.

        Raises:
            ConfigurationError: If a required setting is missing or invalid
        """
        missing = []
        if self.mode is DeploymentMode.DIRECT:
            if not self.rest_url:
                missing.append("MEMLOOP_REST_URL")
            if not self.token:
                missing.append("MEMLOOP_TOKEN")
        elif not self.api_key:
            missing.append("MEMLOOP_API_KEY")
        if missing:
            raise ConfigurationError(
                f"Missing required configuration for {self.mode.value} mode: {', '.join(missing)}"
            )
        if self.request_timeout <= 0:
            raise ConfigurationError("MEMLOOP_TIMEOUT must be positive")
        if self.retention_seconds <= 0 or self.sweep_interval_seconds <= 0:
            raise ConfigurationError("Retention and sweep interval must be positive")

    def describe(self) -> dict[str, str]:
        """Settings for display, with credentials masked."""
        return {
            "mode": self.mode.value,
            "memory_url": self.memory_url,
            "echo_url": self.echo_url,
            "rest_url": self.rest_url or "-",
            "token": _mask(self.token),
            "echo_token": _mask(self.echo_token),
            "api_key": _mask(self.api_key),
            "user_id": self.effective_user_id,
            "request_timeout": f"{self.request_timeout:g}s",
            "retention": f"{self.retention_seconds:g}s",
            "sweep_interval": f"{self.sweep_interval_seconds:g}s",
        }


def _mask(secret: str | None) -> str:
    if not secret:
        return "-"
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}...{secret[-4:]}"


def load_config(env_file: Path | None = None) -> Config:
    """Load .env (working directory by default) and build a Config.

    Raises:
        ConfigurationError: If an environment value cannot be parsed
    """
    env_path = env_file or Path.cwd() / ".env"
    loaded = load_dotenv(env_path, override=False)
    log.debug(f"Loaded .env file {env_path}: {loaded}")
    return Config()
