import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from dotenv import load_dotenv

CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "PLANFORGE_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}


class EndpointConfig(BaseModel):
    base_url: str
    model_id: str
    api_key: Optional[str] = None
    name: Optional[str] = None

    model_config = {"protected_namespaces": ()}


class AgentSettings(BaseModel):
    # Provider tiers: fast (cheap) -> standard -> premium (expensive, optional)
    fast_endpoint: EndpointConfig = Field(
        default_factory=lambda: EndpointConfig(
            base_url="http://127.0.0.1:11434/v1", model_id="qwen2.5-coder:1.5b", name="fast"
        )
    )
    standard_endpoint: EndpointConfig = Field(
        default_factory=lambda: EndpointConfig(
            base_url="http://127.0.0.1:11434/v1", model_id="qwen2.5-coder:7b", name="standard"
        )
    )
    premium_endpoint: Optional[EndpointConfig] = None

    workspace_root: str = "workspace"
    max_file_size_bytes: int = 10 * 1024 * 1024
    max_iterations: int = 10
    max_retries: int = 3
    planning_max_attempts: int = 3
    planning_temperature: float = 0.3
    planning_max_tokens: int = 2000
    max_validation_failures: int = 2
    max_response_time_ms: float = 30000.0
    provider_max_attempts: int = 3
    request_timeout_s: float = 120.0
    log_level: str = "INFO"

    def to_safe_dict(self) -> dict:
        data = self.model_dump()
        for key in ("fast_endpoint", "standard_endpoint", "premium_endpoint"):
            endpoint = data.get(key)
            if isinstance(endpoint, dict) and endpoint.get("api_key"):
                endpoint["api_key"] = "********"
        return data

    model_config = {"protected_namespaces": ()}


def _load_from_env() -> dict:
    load_dotenv()
    env_map = {
        "workspace_root": os.getenv("PLANFORGE_WORKSPACE_ROOT"),
        "max_iterations": os.getenv("PLANFORGE_MAX_ITERATIONS"),
        "max_retries": os.getenv("PLANFORGE_MAX_RETRIES"),
        "planning_max_attempts": os.getenv("PLANFORGE_PLANNING_MAX_ATTEMPTS"),
        "planning_temperature": os.getenv("PLANFORGE_PLANNING_TEMPERATURE"),
        "planning_max_tokens": os.getenv("PLANFORGE_PLANNING_MAX_TOKENS"),
        "max_validation_failures": os.getenv("PLANFORGE_MAX_VALIDATION_FAILURES"),
        "max_response_time_ms": os.getenv("PLANFORGE_MAX_RESPONSE_TIME_MS"),
        "request_timeout_s": os.getenv("PLANFORGE_REQUEST_TIMEOUT_S"),
        "log_level": os.getenv("PLANFORGE_LOG_LEVEL"),
        "fast_base_url": os.getenv("PLANFORGE_FAST_BASE_URL"),
        "fast_model": os.getenv("PLANFORGE_FAST_MODEL"),
        "standard_base_url": os.getenv("PLANFORGE_STANDARD_BASE_URL"),
        "standard_model": os.getenv("PLANFORGE_STANDARD_MODEL"),
        "premium_base_url": os.getenv("PLANFORGE_PREMIUM_BASE_URL"),
        "premium_model": os.getenv("PLANFORGE_PREMIUM_MODEL"),
        "premium_api_key": os.getenv("PLANFORGE_PREMIUM_API_KEY"),
    }
    cleaned = {k: v for k, v in env_map.items() if v not in (None, "")}
    for key in ("max_iterations", "max_retries", "planning_max_attempts", "planning_max_tokens", "max_validation_failures"):
        if key in cleaned:
            cleaned[key] = int(cleaned[key])
    for key in ("planning_temperature", "max_response_time_ms", "request_timeout_s"):
        if key in cleaned:
            cleaned[key] = float(cleaned[key])
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def _fold_endpoint_vars(data: Dict[str, Any]) -> Dict[str, Any]:
    """Collapse flat ``<tier>_base_url``/``<tier>_model`` env values into endpoint dicts."""
    folded = dict(data)
    for tier in ("fast", "standard", "premium"):
        base_url = folded.pop(f"{tier}_base_url", None)
        model = folded.pop(f"{tier}_model", None)
        api_key = folded.pop(f"{tier}_api_key", None)
        if not (base_url or model or api_key):
            continue
        endpoint: Dict[str, Any] = {"name": tier}
        if base_url:
            endpoint["base_url"] = base_url
        if model:
            endpoint["model_id"] = model
        if api_key:
            endpoint["api_key"] = api_key
        folded[f"{tier}_endpoint"] = endpoint
    return folded


def _merge_endpoint(low: Any, high: Any) -> Any:
    if isinstance(low, dict) and isinstance(high, dict):
        return {**low, **high}
    return high if high is not None else low


def load_settings(config_path: Optional[Path] = None) -> AgentSettings:
    env_data = _fold_endpoint_vars(_load_from_env())
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except Exception:
            file_data = {}
    # Config wins by default; allow env overrides only when explicitly enabled.
    if _env_overrides_config():
        low, high = file_data, env_data
    else:
        low, high = env_data, file_data
    merged = {**low, **high}
    for key in ("fast_endpoint", "standard_endpoint", "premium_endpoint"):
        if key in low and key in high:
            merged[key] = _merge_endpoint(low[key], high[key])
    defaults = AgentSettings()
    for key in ("fast_endpoint", "standard_endpoint"):
        endpoint = merged.get(key)
        if isinstance(endpoint, dict):
            base = getattr(defaults, key).model_dump()
            merged[key] = {**base, **endpoint}
    premium = merged.get("premium_endpoint")
    if isinstance(premium, dict) and not (premium.get("base_url") and premium.get("model_id")):
        merged["premium_endpoint"] = None
    return AgentSettings(**merged)


def save_settings(settings: AgentSettings, config_path: Optional[Path] = None) -> None:
    path = config_path or CONFIG_PATH
    path.write_text(settings.model_dump_json(indent=2))
