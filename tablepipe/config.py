"""Run configuration: pipeline options, writer options and YAML profiles."""

import os
import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Union

import yaml

from tablepipe.core.errors import ConfigurationError
from tablepipe.core.models import WriteStrategy
from tablepipe.logging import configure_logging, get_logger

logger = get_logger(__name__)

_ENV_PATTERN = re.compile(r"\$\{([^}|]+)(?:\|([^}]*))?\}")


@dataclass
class PipelineOptions:
    """Options that drive one pipeline run."""

    batch_size: int = 50_000
    limit: int = 0  # 0 means unlimited
    sampling_rate: float = 1.0
    sampling_seed: Optional[int] = None
    max_retries: int = 3
    retry_delay: float = 1.0  # seconds, doubled on each attempt
    strict_schema: bool = False
    no_schema_validation: bool = False
    auto_migrate: bool = False
    pre_exec: Optional[str] = None
    post_exec: Optional[str] = None
    on_error_exec: Optional[str] = None
    finally_exec: Optional[str] = None
    hook_timeout: float = 30.0
    read_queue_capacity: int = 1000
    write_queue_capacity: int = 1000
    metrics_path: Optional[str] = None

    def validate(self) -> None:
        """Reject option combinations that cannot drive a run."""
        errors = []
        if self.batch_size <= 0:
            errors.append(f"batch_size must be positive, got {self.batch_size}")
        if self.limit < 0:
            errors.append(f"limit must not be negative, got {self.limit}")
        if not 0.0 <= self.sampling_rate <= 1.0:
            errors.append(
                f"sampling_rate must be between 0 and 1, got {self.sampling_rate}"
            )
        if self.max_retries < 0:
            errors.append(f"max_retries must not be negative, got {self.max_retries}")
        if self.read_queue_capacity <= 0 or self.write_queue_capacity <= 0:
            errors.append("queue capacities must be positive")
        if self.hook_timeout <= 0:
            errors.append(f"hook_timeout must be positive, got {self.hook_timeout}")
        if errors:
            raise ConfigurationError(
                "Invalid pipeline options: " + "; ".join(errors),
                context={"errors": errors},
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineOptions":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown pipeline options: {', '.join(unknown)}",
                context={"unknown": unknown},
            )
        return cls(**data)


@dataclass
class WriterOptions:
    """Strategy-specific options for a target writer."""

    table: str = ""
    strategy: WriteStrategy = WriteStrategy.APPEND
    key: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.strategy = WriteStrategy.parse(self.strategy)
        self.key = parse_key_list(self.key)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WriterOptions":
        try:
            return cls(
                table=data.get("table", ""),
                strategy=data.get("strategy", WriteStrategy.APPEND),
                key=data.get("key") or [],
            )
        except ValueError as e:
            raise ConfigurationError(str(e)) from e


def parse_key_list(value: Union[None, str, List[str]]) -> List[str]:
    """Accept either a list of key names or a comma-separated string."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [part.strip() for part in value if part and part.strip()]


def _unquote(default: str) -> str:
    if len(default) >= 2 and default[0] == default[-1] and default[0] in "'\"":
        return default[1:-1]
    return default


def substitute_env(value: Any) -> Any:
    """Expand ${VAR} and ${VAR|default} references in string values.

    Defaults may be quoted (``${VAR|'a b'}``); the outer quotes are removed.
    A variable that is unset and has no default becomes an empty string.
    """
    if isinstance(value, str):

        def _replace(match: "re.Match") -> str:
            name = match.group(1).strip()
            default = match.group(2)
            if name in os.environ:
                return os.environ[name]
            if default is not None:
                return _unquote(default.strip())
            logger.warning(f"Environment variable '{name}' is not set")
            return ""

        return _ENV_PATTERN.sub(_replace, value)
    if isinstance(value, dict):
        return {k: substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_env(v) for v in value]
    return value


@dataclass
class Profile:
    """A saved job: source, target and the options to run them with."""

    source: Optional[str] = None
    target: Optional[str] = None
    query: Optional[str] = None
    pipeline: PipelineOptions = field(default_factory=PipelineOptions)
    writer: WriterOptions = field(default_factory=WriterOptions)
    log_level: str = "info"


def load_profile(path: str) -> Profile:
    """Load a YAML profile.

    Args:
    ----
        path: Path to the profile file

    Returns:
    -------
        Parsed profile with environment references expanded

    Raises:
    ------
        ConfigurationError: If the file is missing or malformed

    """
    if not os.path.exists(path):
        raise ConfigurationError(f"Profile not found: {path}", context={"path": path})

    logger.debug(f"Loading profile from: {path}")
    with open(path, "r") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in profile '{path}': {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Profile '{path}' must contain a mapping, got {type(raw).__name__}"
        )

    raw = substitute_env(raw)
    profile = Profile(
        source=raw.get("source"),
        target=raw.get("target"),
        query=raw.get("query"),
        pipeline=PipelineOptions.from_dict(raw.get("pipeline") or {}),
        writer=WriterOptions.from_dict(raw.get("writer") or {}),
        log_level=str(raw.get("log_level", "info")).lower(),
    )
    _configure_logging_from_profile(profile)
    return profile


def _configure_logging_from_profile(profile: Profile) -> None:
    try:
        configure_logging(level=profile.log_level)
    except ValueError as e:
        raise ConfigurationError(str(e), context={"log_level": profile.log_level}) from e
    logger.debug(f"Configured logging from profile with level: {profile.log_level}")
