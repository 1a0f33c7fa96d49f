"""
Gateway Configuration
Builds the provider list from environment variables (and backend/.env).

A provider without an API key is simply left out of the active set.
"""
import logging
import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv

from gateway.errors import ConfigurationError
from gateway.schemas import ProviderConfig, ProviderName, RateLimit

logger = logging.getLogger(__name__)

# Load environment variables from .env file in backend directory
BACKEND_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BACKEND_DIR / ".env")

DEFAULT_REQUEST_TIMEOUT = 60.0
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# name -> defaults. Env prefix is the upper-cased provider name with dashes
# replaced, e.g. GAUSSIAN_SPLATTING_PRIORITY.
PROVIDER_DEFAULTS: Dict[ProviderName, Dict] = {
    ProviderName.OPENAI: {
        "key_vars": ["OPENAI_API_KEY"],
        "endpoint": "https://api.openai.com/v1",
        "model": "gpt-4o",
        "priority": 1,
        "rate_limit": (50, 60000),
        "fallback": ProviderName.REPLICATE,
    },
    ProviderName.REPLICATE: {
        "key_vars": ["REPLICATE_API_TOKEN"],
        "endpoint": "https://api.replicate.com/v1",
        "model": "camenduru/triposr:3f5a3e0e-5a3e-4a3e-8a3e-5a3e4a3e8a3e",
        "priority": 2,
        "rate_limit": (30, 60000),
        "fallback": ProviderName.STABILITY,
    },
    ProviderName.STABILITY: {
        "key_vars": ["STABILITY_API_KEY", "STABILITY_AI_API_KEY"],
        "endpoint": "https://api.stability.ai",
        "model": "esrgan-v1-x2plus",
        "priority": 3,
        "rate_limit": (20, 60000),
        "fallback": None,
    },
    ProviderName.LUMA: {
        "key_vars": ["LUMA_API_KEY", "LUMA_AI_API_KEY"],
        "endpoint": "https://webapp.engineeringlumalabs.com/api/v3",
        "model": "capture",
        "priority": 4,
        "rate_limit": (10, 60000),
        "fallback": ProviderName.GAUSSIAN_SPLATTING,
    },
    ProviderName.GAUSSIAN_SPLATTING: {
        "key_vars": ["GAUSSIAN_SPLATTING_API_TOKEN", "REPLICATE_API_TOKEN"],
        "endpoint": "https://api.replicate.com/v1",
        "model": "camenduru/gaussian-splatting:latest",
        "priority": 5,
        "rate_limit": (5, 60000),
        "fallback": None,
    },
}


def env_prefix(provider: ProviderName) -> str:
    return provider.value.upper().replace("-", "_")


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")


def _get_fallback(env: Mapping[str, str], key: str, default: Optional[ProviderName]) -> Optional[ProviderName]:
    if key not in env:
        return default
    raw = env[key].strip().lower()
    if not raw or raw == "none":
        return None
    try:
        return ProviderName(raw)
    except ValueError:
        raise ConfigurationError(f"{key} names unknown provider {raw!r}")


def _find_key(env: Mapping[str, str], key_vars: List[str]) -> Optional[str]:
    for var in key_vars:
        value = env.get(var)
        if value:
            return value
    return None


def load_provider_configs(env: Optional[Mapping[str, str]] = None) -> List[ProviderConfig]:
    """
    Build the active provider configurations.

    Args:
        env: mapping to read from (defaults to os.environ)

    Returns:
        List of ProviderConfig for every provider that has credentials,
        in declaration order (the gateway sorts by priority).

    Raises:
        ConfigurationError: an override is present but malformed
    """
    env = os.environ if env is None else env
    timeout = _get_float(env, "GATEWAY_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)

    configs: List[ProviderConfig] = []
    for provider, defaults in PROVIDER_DEFAULTS.items():
        api_key = _find_key(env, defaults["key_vars"])
        if not api_key:
            logger.info(f"[Config] {provider.value} has no API key - excluded")
            continue

        prefix = env_prefix(provider)
        max_requests, window_ms = defaults["rate_limit"]
        try:
            config = ProviderConfig(
                provider=provider,
                api_key=api_key,
                endpoint=env.get(f"{prefix}_ENDPOINT") or defaults["endpoint"],
                model=env.get(f"{prefix}_MODEL") or defaults["model"],
                priority=_get_int(env, f"{prefix}_PRIORITY", defaults["priority"]),
                rate_limit=RateLimit(
                    max_requests=_get_int(env, f"{prefix}_RATE_LIMIT", max_requests),
                    window_ms=_get_int(env, f"{prefix}_RATE_WINDOW_MS", window_ms),
                ),
                fallback_provider=_get_fallback(env, f"{prefix}_FALLBACK", defaults["fallback"]),
                request_timeout=timeout,
            )
        except ValueError as e:
            raise ConfigurationError(f"invalid configuration for {provider.value}: {e}")

        logger.info(
            f"[Config] {provider.value} enabled (key: {api_key[:6]}..., priority {config.priority})"
        )
        configs.append(config)

    return configs


def validate_provider_keys(env: Optional[Mapping[str, str]] = None) -> List[str]:
    """Return the providers whose keys are missing, logging a warning if any."""
    env = os.environ if env is None else env
    missing = [
        provider.value
        for provider, defaults in PROVIDER_DEFAULTS.items()
        if not _find_key(env, defaults["key_vars"])
    ]
    if missing:
        logger.warning(f"[Config] Missing API keys for: {', '.join(missing)}")
    return missing


def configure_logging(level: Optional[str] = None) -> None:
    """Console logging for scripts. Library code never calls this on import."""
    level_name = (level or os.getenv("GATEWAY_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)
