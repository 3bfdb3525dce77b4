"""
Configuration management and loading.

Handles service settings: database location, logging, provider timeouts,
cache TTLs, daily rate limits and API tokens.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ai_story_guard.storage.models import CacheKind

DEFAULT_OPERATION_LIMITS = {
    "enhance": 10,
    "twist": 10,
    "continuation": 10,
    "consistency": 50,
}

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class CacheConfig:
    """Cache TTLs, in hours."""
    default_ttl_hours: float = 24.0
    ttl_hours: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        """Validate TTL values are positive and kinds are known."""
        if self.default_ttl_hours <= 0:
            raise ValueError("default_ttl_hours must be > 0")
        valid_kinds = {kind.value for kind in CacheKind}
        for kind, hours in self.ttl_hours.items():
            if kind not in valid_kinds:
                raise ValueError(f"Unknown cache kind '{kind}', must be one of: {sorted(valid_kinds)}")
            if hours <= 0:
                raise ValueError(f"ttl_hours.{kind} must be > 0")

    def default_ttl(self) -> timedelta:
        return timedelta(hours=self.default_ttl_hours)

    def ttl_by_kind(self) -> Dict[CacheKind, timedelta]:
        return {CacheKind(kind): timedelta(hours=hours) for kind, hours in self.ttl_hours.items()}


@dataclass(frozen=True)
class RateLimitConfig:
    """Daily call limits, per operation with a shared default."""
    default: int = 10
    operations: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_OPERATION_LIMITS))

    def __post_init__(self):
        """Validate limits are non-negative integers."""
        if self.default < 0:
            raise ValueError("rate_limits.default must be >= 0")
        for operation, limit in self.operations.items():
            if limit < 0:
                raise ValueError(f"rate_limits.operations.{operation} must be >= 0")

    def limit_for(self, operation: str) -> int:
        """Get the limit for an operation, using the default if not specified."""
        return self.operations.get(operation, self.default)


@dataclass(frozen=True)
class AuthConfig:
    """Bearer token to user id mapping."""
    tokens: Dict[str, str] = field(default_factory=dict)

    def resolve(self, token: str) -> Optional[str]:
        return self.tokens.get(token)


@dataclass(frozen=True)
class ServiceConfig:
    """Complete service configuration."""
    database: str = "ai_story_guard.db"
    log_level: str = "INFO"
    provider_timeout_seconds: float = 30.0
    cache: CacheConfig = field(default_factory=CacheConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)

    def __post_init__(self):
        """Validate scalar settings."""
        if not self.database:
            raise ValueError("database must not be empty")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {sorted(_LOG_LEVELS)}")
        if self.provider_timeout_seconds <= 0:
            raise ValueError("provider_timeout_seconds must be > 0")


def load_service_config(path: str) -> ServiceConfig:
    """Load and validate service configuration from a YAML file.

    Strict validation ensures no silent misconfiguration: unknown keys
    are rejected at every level.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ServiceConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Service config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    _reject_unknown_keys(
        raw_config,
        {'database', 'log_level', 'provider_timeout_seconds', 'cache', 'rate_limits', 'auth'},
        "configuration"
    )

    kwargs: Dict[str, Any] = {}
    if 'database' in raw_config:
        kwargs['database'] = _require_str(raw_config['database'], 'database')
    if 'log_level' in raw_config:
        kwargs['log_level'] = _require_str(raw_config['log_level'], 'log_level').upper()
    if 'provider_timeout_seconds' in raw_config:
        kwargs['provider_timeout_seconds'] = _require_number(
            raw_config['provider_timeout_seconds'], 'provider_timeout_seconds'
        )
    if 'cache' in raw_config:
        kwargs['cache'] = _parse_cache_config(raw_config['cache'])
    if 'rate_limits' in raw_config:
        kwargs['rate_limits'] = _parse_rate_limit_config(raw_config['rate_limits'])
    if 'auth' in raw_config:
        kwargs['auth'] = _parse_auth_config(raw_config['auth'])

    return ServiceConfig(**kwargs)


def _reject_unknown_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _require_dict(value: Any, path: str) -> Dict:
    if not isinstance(value, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    return value


def _require_str(value: Any, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{path}' must be a non-empty string")
    return value.strip()


def _require_number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    return float(value)


def _require_int(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{path}' must be an integer")
    return value


def _parse_cache_config(data: Any) -> CacheConfig:
    """Parse and validate the cache section.

    Raises:
        ValueError: If configuration is invalid
    """
    data = _require_dict(data, 'cache')
    _reject_unknown_keys(data, {'default_ttl_hours', 'ttl_hours'}, 'cache')

    kwargs: Dict[str, Any] = {}
    if 'default_ttl_hours' in data:
        kwargs['default_ttl_hours'] = _require_number(data['default_ttl_hours'], 'cache.default_ttl_hours')
    if 'ttl_hours' in data:
        ttl_data = _require_dict(data['ttl_hours'], 'cache.ttl_hours')
        kwargs['ttl_hours'] = {
            str(kind): _require_number(hours, f"cache.ttl_hours.{kind}")
            for kind, hours in ttl_data.items()
        }
    return CacheConfig(**kwargs)


def _parse_rate_limit_config(data: Any) -> RateLimitConfig:
    """Parse and validate the rate_limits section.

    Operations listed in the file override the built-in per-operation
    limits; the rest keep theirs.

    Raises:
        ValueError: If configuration is invalid
    """
    data = _require_dict(data, 'rate_limits')
    _reject_unknown_keys(data, {'default', 'operations'}, 'rate_limits')

    default = RateLimitConfig().default
    if 'default' in data:
        default = _require_int(data['default'], 'rate_limits.default')

    operations = dict(DEFAULT_OPERATION_LIMITS)
    if 'operations' in data:
        ops_data = _require_dict(data['operations'], 'rate_limits.operations')
        for operation, limit in ops_data.items():
            operations[str(operation)] = _require_int(limit, f"rate_limits.operations.{operation}")

    return RateLimitConfig(default=default, operations=operations)


def _parse_auth_config(data: Any) -> AuthConfig:
    """Parse and validate the auth section.

    Raises:
        ValueError: If configuration is invalid
    """
    data = _require_dict(data, 'auth')
    _reject_unknown_keys(data, {'tokens'}, 'auth')

    tokens_data = _require_dict(data.get('tokens', {}), 'auth.tokens')
    tokens = {}
    for token, user_id in tokens_data.items():
        tokens[_require_str(token, 'auth.tokens key')] = _require_str(user_id, f"auth.tokens.{token}")
    return AuthConfig(tokens=tokens)
