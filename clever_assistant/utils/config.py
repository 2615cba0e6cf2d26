"""
Configuration module for Clever Assistant.

Loads environment variables into a single AssistantConfig object that is
built once at start-up and passed to every component.
"""
import os
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional
from dotenv import load_dotenv

from ..agents.error_handling import ConfigInvalid
from ..agents.presets import AssistantMode

logger = logging.getLogger(__name__)


def get_required_env(name: str) -> str:
    """
    Get a required environment variable or raise ValueError.

    Args:
        name: Name of the environment variable.

    Returns:
        The value of the environment variable.

    Raises:
        ValueError: If the environment variable is not set.
    """
    value = os.getenv(name)
    if not value:
        raise ValueError(f"Required environment variable '{name}' is not set. "
                        f"Please set it in your .env file or environment.")
    return value


def get_optional_env(name: str, default: str) -> str:
    """
    Get an optional environment variable with a default value.

    Args:
        name: Name of the environment variable.
        default: Default value if not set.

    Returns:
        The value of the environment variable or the default.
    """
    return os.getenv(name, default)


def _get_bool_env(name: str, default: str) -> bool:
    return get_optional_env(name, default).strip().lower() == "true"


@dataclass(frozen=True)
class ModelPrice:
    """Price row for a model, in USD per million tokens."""
    input_per_million: float
    output_per_million: float
    display_name: str


# USD per million tokens
MODEL_PRICES: Dict[str, ModelPrice] = {
    "gemini-1.5-flash": ModelPrice(0.075, 0.30, "Gemini 1.5 Flash"),
    "gemini-1.5-pro": ModelPrice(1.25, 5.00, "Gemini 1.5 Pro"),
    "gemini-2.0-flash": ModelPrice(0.10, 0.40, "Gemini 2.0 Flash"),
    "gemini-pro": ModelPrice(0.50, 1.50, "Gemini Pro"),
    "llama3.2:1b": ModelPrice(0.0, 0.0, "Llama 3.2 1B (local)"),
}


@dataclass(frozen=True)
class AssistantConfig:
    """Runtime configuration shared by the assistant components."""
    google_api_key: Optional[str] = None
    use_local: bool = False
    local_llm_model: str = "llama3.2:1b"
    ollama_base_url: str = "http://localhost:11434"
    default_model: str = "gemini-1.5-flash"
    default_max_tokens: int = 1024
    default_temperature: float = 0.7
    budget_limit: float = 0.50
    warn_threshold: float = 0.8
    cache_enabled: bool = True
    cache_max_size: int = 100
    cache_ttl_seconds: float = 3600
    cache_persist: bool = True
    data_dir: str = "./data"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    default_mode: str = "learning"
    model_prices: Mapping[str, ModelPrice] = field(
        default_factory=lambda: dict(MODEL_PRICES)
    )

    @property
    def cache_file(self) -> str:
        return os.path.join(self.data_dir, "cache.json")

    def get_model_price(self, model: Optional[str] = None) -> ModelPrice:
        """
        Get the price row for a model.

        Unknown models fall back to the default model's row.
        """
        model = model or self.default_model
        if model in self.model_prices:
            return self.model_prices[model]
        return self.model_prices[self.default_model]

    def validate(self) -> "AssistantConfig":
        """
        Validate the configuration.

        Returns:
            The config itself, for chaining.

        Raises:
            ConfigInvalid: Listing every problem found.
        """
        problems: List[str] = []

        if not self.use_local and not (self.google_api_key and self.google_api_key.strip()):
            problems.append("GOOGLE_API_KEY is not set (or set USE_LOCAL=true)")
        if not 1 <= self.default_max_tokens <= 8192:
            problems.append("DEFAULT_MAX_TOKENS must be between 1 and 8192")
        if not 0 <= self.default_temperature <= 2:
            problems.append("DEFAULT_TEMPERATURE must be between 0 and 2")
        if self.budget_limit <= 0:
            problems.append("BUDGET_LIMIT_USD must be greater than 0")
        if not 0 < self.warn_threshold <= 1:
            problems.append("COST_ALERT_THRESHOLD must be in (0, 1]")
        if self.cache_max_size < 1:
            problems.append("CACHE_MAX_SIZE must be at least 1")
        if self.cache_ttl_seconds <= 0:
            problems.append("CACHE_TTL_SECONDS must be greater than 0")
        if self.default_model not in self.model_prices:
            problems.append(f"LLM_MODEL '{self.default_model}' has no price entry")
        if self.default_mode not in AssistantMode.ids():
            problems.append(f"DEFAULT_MODE '{self.default_mode}' is not a known mode")

        if problems:
            raise ConfigInvalid(problems)
        return self

    def summary(self) -> Dict[str, object]:
        """Short, secret-free description of the active configuration."""
        return {
            "model": self.get_model_price().display_name,
            "max_tokens": self.default_max_tokens,
            "budget_limit": self.budget_limit,
            "cache_enabled": self.cache_enabled,
            "local": self.use_local,
        }


def load_config(env_file: Optional[str] = None, validate: bool = True) -> AssistantConfig:
    """
    Build an AssistantConfig from the environment.

    Args:
        env_file: Optional .env path (defaults to dotenv's search).
        validate: Whether to validate before returning.

    Returns:
        The loaded configuration.

    Raises:
        ConfigInvalid: If validation is requested and fails, or a numeric
            variable cannot be parsed.
    """
    load_dotenv(env_file)

    use_local = _get_bool_env("USE_LOCAL", "false")
    local_model = get_optional_env("LOCAL_LLM_MODEL", "llama3.2:1b")
    default_model = local_model if use_local else get_optional_env("LLM_MODEL", "gemini-1.5-flash")

    google_api_key = os.getenv("GOOGLE_API_KEY")
    if validate and not use_local:
        try:
            google_api_key = get_required_env("GOOGLE_API_KEY")
        except ValueError as e:
            raise ConfigInvalid([str(e)]) from e

    prices = dict(MODEL_PRICES)
    if use_local and local_model not in prices:
        prices[local_model] = ModelPrice(0.0, 0.0, f"{local_model} (local)")

    try:
        config = AssistantConfig(
            google_api_key=google_api_key,
            use_local=use_local,
            local_llm_model=local_model,
            ollama_base_url=get_optional_env("OLLAMA_BASE_URL", "http://localhost:11434"),
            default_model=default_model,
            default_max_tokens=int(get_optional_env("DEFAULT_MAX_TOKENS", "1024")),
            default_temperature=float(get_optional_env("DEFAULT_TEMPERATURE", "0.7")),
            budget_limit=float(get_optional_env("BUDGET_LIMIT_USD", "0.50")),
            warn_threshold=float(get_optional_env("COST_ALERT_THRESHOLD", "0.8")),
            cache_enabled=_get_bool_env("CACHE_ENABLED", "true"),
            cache_max_size=int(get_optional_env("CACHE_MAX_SIZE", "100")),
            cache_ttl_seconds=float(get_optional_env("CACHE_TTL_SECONDS", "3600")),
            cache_persist=_get_bool_env("CACHE_PERSIST", "true"),
            data_dir=get_optional_env("DATA_DIR", "./data"),
            log_level=get_optional_env("LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("LOG_FILE") or None,
            default_mode=get_optional_env("DEFAULT_MODE", "learning"),
            model_prices=prices,
        )
    except ValueError as e:
        raise ConfigInvalid([f"Malformed numeric setting: {e}"]) from e

    return config.validate() if validate else config


def setup_logging(config: AssistantConfig) -> None:
    """Configure root logging from the config (console plus optional file)."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
    logger.debug(f"Logging configured at level {config.log_level}")
