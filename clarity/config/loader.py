"""
Configuration management and loading.

Handles application settings from a YAML file and environment variables.
Every section is optional; unknown keys are rejected so a typo never turns
into a silently ignored setting.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional

import yaml

from clarity.core.enrichment import DEFAULT_SPAN_GAP_MS, MAX_TEXT_LENGTH
from clarity.core.pricing import (
    DEFAULT_FALLBACK_PRICING,
    FallbackPolicy,
    ModelPricing,
    PricingTable,
    default_pricing_table,
)
from clarity.core.dispatch import DEFAULT_QUEUE_SIZE, DEFAULT_WORKERS
from clarity.storage.db import DEFAULT_DB_PATH

CONFIG_ENV_VAR = "CLARITY_CONFIG"
DB_PATH_ENV_VAR = "CLARITY_DB_PATH"

DEFAULT_TRACE_TYPES = frozenset({"single_call", "multi_step", "agent_workflow", "chain", "streaming"})
DEFAULT_MAX_BATCH_SIZE = 1000
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class DatabaseConfig:
    """Location of the SQLite database."""
    path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        if not self.path:
            raise ValueError("database.path must not be empty")


@dataclass(frozen=True)
class IngestionConfig:
    """Limits applied while ingesting traces."""
    trace_types: FrozenSet[str] = DEFAULT_TRACE_TYPES
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    max_text_length: int = MAX_TEXT_LENGTH
    span_gap_ms: int = DEFAULT_SPAN_GAP_MS

    def __post_init__(self):
        """Validate ingestion limits."""
        if not self.trace_types:
            raise ValueError("ingestion.trace_types must not be empty")
        if self.max_batch_size < 1:
            raise ValueError("ingestion.max_batch_size must be >= 1")
        if self.max_text_length < 1:
            raise ValueError("ingestion.max_text_length must be >= 1")
        if self.span_gap_ms < 0:
            raise ValueError("ingestion.span_gap_ms cannot be negative")


@dataclass(frozen=True)
class DispatchConfig:
    """Background side-effect worker pool."""
    workers: int = DEFAULT_WORKERS
    queue_size: int = DEFAULT_QUEUE_SIZE

    def __post_init__(self):
        if self.workers < 1:
            raise ValueError("dispatch.workers must be >= 1")
        if self.queue_size < 1:
            raise ValueError("dispatch.queue_size must be >= 1")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self):
        if self.level.upper() not in LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {list(LOG_LEVELS)}")


@dataclass(frozen=True)
class Settings:
    """Complete application settings."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    pricing: PricingTable = field(default_factory=default_pricing_table)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_settings(path: Optional[str] = None) -> Settings:
    """Load and validate settings from a YAML file.

    With no path, defaults are used. CLARITY_DB_PATH, when set, overrides
    database.path either way.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated Settings object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    raw_config: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            try:
                raw_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")
    _check_keys(raw_config, {'database', 'pricing', 'ingestion', 'dispatch', 'logging'}, "configuration")

    database = _parse_database(_section(raw_config, 'database'))
    env_db_path = os.environ.get(DB_PATH_ENV_VAR)
    if env_db_path:
        database = DatabaseConfig(path=env_db_path)

    return Settings(
        database=database,
        pricing=_parse_pricing(_section(raw_config, 'pricing')),
        ingestion=_parse_ingestion(_section(raw_config, 'ingestion')),
        dispatch=_parse_dispatch(_section(raw_config, 'dispatch')),
        logging=_parse_logging(_section(raw_config, 'logging')),
    )


def _section(raw_config: Mapping[str, Any], name: str) -> Dict[str, Any]:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Mapping[str, Any], allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _int_value(data: Mapping[str, Any], key: str, default: int, path: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in {path} must be an integer")
    return value


def _parse_database(data: Dict[str, Any]) -> DatabaseConfig:
    _check_keys(data, {'path'}, "database")
    db_path = data.get('path', DEFAULT_DB_PATH)
    if not isinstance(db_path, str):
        raise ValueError("'path' in database must be a string")
    return DatabaseConfig(path=db_path)


def _parse_rate_pair(data: Any, path: str) -> ModelPricing:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    _check_keys(data, {'prompt', 'completion'}, path)
    for key in ('prompt', 'completion'):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"'{key}' in {path} must be a number")
    try:
        return ModelPricing.of(data['prompt'], data['completion'])
    except ArithmeticError:
        raise ValueError(f"Rates in {path} must be numbers")


def _parse_pricing(data: Dict[str, Any]) -> PricingTable:
    """Build the pricing table.

    Configured models are layered over the built-in rates; a configured
    (provider, model) pair replaces the built-in one.
    """
    _check_keys(data, {'fallback', 'default_rate', 'models'}, "pricing")

    fallback_str = data.get('fallback', FallbackPolicy.DEFAULT_RATE.value)
    if not isinstance(fallback_str, str):
        raise ValueError("'fallback' in pricing must be a string")
    try:
        fallback_policy = FallbackPolicy(fallback_str.lower())
    except ValueError:
        valid_policies = [policy.value for policy in FallbackPolicy]
        raise ValueError(f"'fallback' in pricing must be one of: {valid_policies}")

    fallback_pricing = DEFAULT_FALLBACK_PRICING
    if 'default_rate' in data:
        fallback_pricing = _parse_rate_pair(data['default_rate'], "pricing.default_rate")

    prices = dict(default_pricing_table().prices)
    models_data = data.get('models') or {}
    if not isinstance(models_data, dict):
        raise ValueError("'models' in pricing must be a dictionary")
    for provider, provider_models in models_data.items():
        if not isinstance(provider_models, dict):
            raise ValueError(f"Provider '{provider}' in pricing.models must be a dictionary")
        for model, rates in provider_models.items():
            prices[(str(provider), str(model))] = _parse_rate_pair(rates, f"pricing.models.{provider}.{model}")

    return PricingTable(prices=prices, fallback_policy=fallback_policy, fallback_pricing=fallback_pricing)


def _parse_ingestion(data: Dict[str, Any]) -> IngestionConfig:
    _check_keys(data, {'trace_types', 'max_batch_size', 'max_text_length', 'span_gap_ms'}, "ingestion")

    trace_types = data.get('trace_types', sorted(DEFAULT_TRACE_TYPES))
    if not isinstance(trace_types, list) or not all(isinstance(t, str) for t in trace_types):
        raise ValueError("'trace_types' in ingestion must be a list of strings")

    return IngestionConfig(
        trace_types=frozenset(trace_types),
        max_batch_size=_int_value(data, 'max_batch_size', DEFAULT_MAX_BATCH_SIZE, "ingestion"),
        max_text_length=_int_value(data, 'max_text_length', MAX_TEXT_LENGTH, "ingestion"),
        span_gap_ms=_int_value(data, 'span_gap_ms', DEFAULT_SPAN_GAP_MS, "ingestion"),
    )


def _parse_dispatch(data: Dict[str, Any]) -> DispatchConfig:
    _check_keys(data, {'workers', 'queue_size'}, "dispatch")
    return DispatchConfig(
        workers=_int_value(data, 'workers', DEFAULT_WORKERS, "dispatch"),
        queue_size=_int_value(data, 'queue_size', DEFAULT_QUEUE_SIZE, "dispatch"),
    )


def _parse_logging(data: Dict[str, Any]) -> LoggingConfig:
    _check_keys(data, {'level'}, "logging")
    level = data.get('level', "INFO")
    if not isinstance(level, str):
        raise ValueError("'level' in logging must be a string")
    return LoggingConfig(level=level.upper())
