"""Load settings.yaml into typed dataclasses. Checks the gateway credential at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from council.models import ModelSpec

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class GatewayConfig:
    base_url: str
    api_key_env: str
    timeout_sec: float = 120.0
    retries: int = 3
    min_timeout_sec: float = 2.0
    max_timeout_sec: float = 10.0
    reasoning_prefixes: list[str] = field(default_factory=lambda: ["o1", "o3", "o4", "gpt-5"])


@dataclass
class PacingConfig:
    stage1_stagger_sec: float = 3.0
    stage2_stagger_sec: float = 4.0


@dataclass
class PromptsConfig:
    review_system: str
    synthesis_system: str
    emergency_note: str
    stage1_system: str | None = None
    review_excerpt_chars: int | None = None
    synthesis_history_chars: int | None = None


@dataclass
class EngineConfig:
    models: list[ModelSpec]
    synthesis_model: str
    temperature: float = 0.7
    max_tokens: int = 2000
    top_p: float = 0.95
    reasoning_max_completion_tokens: int = 4000
    reasoning_effort: str | None = None
    preferred_fallback_vendors: list[str] = field(default_factory=list)


@dataclass
class AppConfig:
    gateway: GatewayConfig
    pacing: PacingConfig
    prompts: PromptsConfig
    engine: EngineConfig
    credentials_available: bool = False


def _pick(raw: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first key present in raw. Accepts camelCase and snake_case spellings."""
    for key in keys:
        if key in raw:
            return raw[key]
    return default


def engine_config_from_dict(raw: dict[str, Any], base: EngineConfig | None = None) -> EngineConfig:
    """Build an EngineConfig from a client payload, filling gaps from base.

    Raises ValueError if the resulting model list is empty or malformed.
    """
    models_raw = _pick(raw, "models")
    if models_raw is None:
        models = list(base.models) if base else []
    elif not isinstance(models_raw, list):
        raise ValueError(f"models must be a list, got {type(models_raw).__name__}")
    else:
        models = []
        for entry in models_raw:
            if isinstance(entry, str):
                models.append(ModelSpec(id=entry, name=entry))
            elif isinstance(entry, dict) and entry.get("id"):
                models.append(ModelSpec(id=str(entry["id"]), name=str(entry.get("name") or entry["id"])))
            else:
                raise ValueError(f"Invalid model entry: {entry!r}")
    if not models:
        raise ValueError("At least one model must be configured")

    synthesis_model = _pick(
        raw, "synthesisModel", "synthesis_model", "chairmanModel",
        default=base.synthesis_model if base else None,
    )
    if not synthesis_model:
        raise ValueError("A synthesis model must be configured")

    defaults = base or EngineConfig(models=models, synthesis_model=str(synthesis_model))
    vendors = _pick(
        raw, "preferredFallbackVendors", "preferred_fallback_vendors",
        default=defaults.preferred_fallback_vendors,
    )
    if not isinstance(vendors, list):
        raise ValueError(f"preferredFallbackVendors must be a list, got {type(vendors).__name__}")
    return EngineConfig(
        models=models,
        synthesis_model=str(synthesis_model),
        temperature=float(_pick(raw, "temperature", default=defaults.temperature)),
        max_tokens=int(_pick(raw, "maxTokens", "max_tokens", default=defaults.max_tokens)),
        top_p=float(_pick(raw, "topP", "top_p", default=defaults.top_p)),
        reasoning_max_completion_tokens=int(_pick(
            raw, "reasoningMaxCompletionTokens", "reasoning_max_completion_tokens",
            default=defaults.reasoning_max_completion_tokens,
        )),
        reasoning_effort=_pick(raw, "reasoningEffort", "reasoning_effort", default=defaults.reasoning_effort),
        preferred_fallback_vendors=[str(v) for v in vendors],
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs a warning for a missing API key but does not raise; the gateway
    reports it as a ConfigurationError on first use.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    gateway_raw = raw["gateway"]
    gateway = GatewayConfig(
        base_url=str(gateway_raw["base_url"]),
        api_key_env=str(gateway_raw["api_key_env"]),
        timeout_sec=float(gateway_raw.get("timeout_sec", 120.0)),
        retries=int(gateway_raw.get("retries", 3)),
        min_timeout_sec=float(gateway_raw.get("min_timeout_sec", 2.0)),
        max_timeout_sec=float(gateway_raw.get("max_timeout_sec", 10.0)),
        reasoning_prefixes=[str(p) for p in gateway_raw.get("reasoning_prefixes", ["o1", "o3", "o4", "gpt-5"])],
    )

    pacing_raw = raw.get("pacing", {})
    pacing = PacingConfig(
        stage1_stagger_sec=float(pacing_raw.get("stage1_stagger_sec", 3.0)),
        stage2_stagger_sec=float(pacing_raw.get("stage2_stagger_sec", 4.0)),
    )

    prompts_raw = raw["prompts"]
    excerpt = prompts_raw.get("review_excerpt_chars")
    history_chars = prompts_raw.get("synthesis_history_chars")
    prompts = PromptsConfig(
        review_system=prompts_raw["review_system"],
        synthesis_system=prompts_raw["synthesis_system"],
        emergency_note=prompts_raw["emergency_note"],
        stage1_system=prompts_raw.get("stage1_system"),
        review_excerpt_chars=int(excerpt) if excerpt is not None else None,
        synthesis_history_chars=int(history_chars) if history_chars is not None else None,
    )

    engine = engine_config_from_dict(raw["engine"])

    credentials_available = bool(os.environ.get(gateway.api_key_env, "").strip())
    if credentials_available:
        logger.info("Gateway credential found: %s", gateway.api_key_env)
    else:
        logger.warning("Gateway credential missing — set %s in .env", gateway.api_key_env)

    return AppConfig(
        gateway=gateway,
        pacing=pacing,
        prompts=prompts,
        engine=engine,
        credentials_available=credentials_available,
    )
