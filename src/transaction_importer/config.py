"""Configuration loading and validation for the transaction importer."""

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Optional

import yaml

from transaction_importer.utils.logging_config import get_logger

logger = get_logger(__name__)


class ConfigError(Exception):
    """Exception raised for configuration errors."""

    pass


@dataclass
class InferenceConfig:
    """Settings for the language-model inference service.

    Attributes:
        api_key_env: Environment variable holding the API key.
        model: Model to use for requests.
        max_tokens: Maximum tokens in a response.
        temperature: Sampling temperature (low for consistent output).
        timeout_seconds: Upper bound on a single request.
        retry_attempts: Attempts per request before giving up.
        retry_delay: Initial delay between retries (exponential backoff).
        max_concurrent_requests: Requests allowed in flight at once.
    """

    api_key_env: str = "ANTHROPIC_API_KEY"
    model: str = "claude-3-5-haiku-latest"
    max_tokens: int = 512
    temperature: float = 0.6
    timeout_seconds: float = 20.0
    retry_attempts: int = 3
    retry_delay: float = 1.0
    max_concurrent_requests: int = 4

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "InferenceConfig":
        """Create from dictionary."""
        return cls(
            api_key_env=str(data.get("api_key_env", "ANTHROPIC_API_KEY")),
            model=str(data.get("model", "claude-3-5-haiku-latest")),
            max_tokens=int(data.get("max_tokens", 512)),  # type: ignore[arg-type]
            temperature=float(data.get("temperature", 0.6)),  # type: ignore[arg-type]
            timeout_seconds=float(data.get("timeout_seconds", 20.0)),  # type: ignore[arg-type]
            retry_attempts=int(data.get("retry_attempts", 3)),  # type: ignore[arg-type]
            retry_delay=float(data.get("retry_delay", 1.0)),  # type: ignore[arg-type]
            max_concurrent_requests=int(data.get("max_concurrent_requests", 4)),  # type: ignore[arg-type]
        )


@dataclass
class PipelineConfig:
    """Settings for the import pipeline.

    Attributes:
        batch_size: Transactions per categorization batch.
        transfer_tolerance: Maximum |a + b| for two amounts to pair as a transfer.
        max_file_size_mb: Largest input file accepted.
        max_rows: Largest number of data rows accepted per file.
    """

    batch_size: int = 10
    transfer_tolerance: Decimal = field(default_factory=lambda: Decimal("0.01"))
    max_file_size_mb: int = 50
    max_rows: int = 500_000

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "PipelineConfig":
        """Create from dictionary."""
        batch_size = int(data.get("batch_size", 10))  # type: ignore[arg-type]
        if batch_size < 1:
            raise ConfigError(f"pipeline.batch_size must be at least 1, got {batch_size}")
        return cls(
            batch_size=batch_size,
            transfer_tolerance=Decimal(str(data.get("transfer_tolerance", "0.01"))),
            max_file_size_mb=int(data.get("max_file_size_mb", 50)),  # type: ignore[arg-type]
            max_rows=int(data.get("max_rows", 500_000)),  # type: ignore[arg-type]
        )


@dataclass
class OutputConfig:
    """Settings for the transaction store.

    Attributes:
        store_path: CSV file that receives saved transactions.
        date_format: Date format written to the store.
    """

    store_path: str = "transactions.csv"
    date_format: str = "%Y-%m-%d"

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "OutputConfig":
        """Create from dictionary."""
        return cls(
            store_path=str(data.get("store_path", "transactions.csv")),
            date_format=str(data.get("date_format", "%Y-%m-%d")),
        )


@dataclass
class LoggingConfig:
    """Settings for logging.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Path to log file.
    """

    level: str = "INFO"
    file: str = "transaction_importer.log"

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "LoggingConfig":
        """Create from dictionary."""
        return cls(
            level=str(data.get("level", "INFO")),
            file=str(data.get("file", "transaction_importer.log")),
        )


@dataclass
class Config:
    """Main configuration container."""

    inference: InferenceConfig = field(default_factory=InferenceConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_yaml_file(path: Path) -> dict[str, object]:
    """Load a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content.

    Raises:
        FileNotFoundError: If file doesn't exist.
        ConfigError: If the file is not valid YAML or not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(content).__name__}")
    return content


def _section(data: dict[str, object], name: str) -> Optional[dict[str, object]]:
    section = data.get(name)
    if section is None:
        return None
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(section).__name__}")
    return section


def load_config(
    settings_path: Optional[Path] = None,
    config_dir: Optional[Path] = None,
) -> Config:
    """Load configuration from settings.yaml.

    A missing settings file is not an error; defaults are used.

    Args:
        settings_path: Path to settings.yaml (or None to use default).
        config_dir: Base config directory (default: ./config).

    Returns:
        Complete Config object.

    Raises:
        ConfigError: If the settings file is malformed.
    """
    if config_dir is None:
        config_dir = Path("config")
    if settings_path is None:
        settings_path = config_dir / "settings.yaml"

    config = Config()

    if not settings_path.exists():
        logger.warning(f"Settings file not found: {settings_path}, using defaults")
        return config

    data = load_yaml_file(settings_path)

    try:
        inference_section = _section(data, "inference")
        if inference_section is not None:
            config.inference = InferenceConfig.from_dict(inference_section)
        pipeline_section = _section(data, "pipeline")
        if pipeline_section is not None:
            config.pipeline = PipelineConfig.from_dict(pipeline_section)
        output_section = _section(data, "output")
        if output_section is not None:
            config.output = OutputConfig.from_dict(output_section)
        logging_section = _section(data, "logging")
        if logging_section is not None:
            config.logging = LoggingConfig.from_dict(logging_section)
    except (TypeError, ValueError, ArithmeticError) as e:
        raise ConfigError(f"Invalid value in {settings_path}: {e}") from e

    logger.info(f"Loaded settings from {settings_path}")
    return config
