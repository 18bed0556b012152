"""Model health checks — ping each configured model before starting a run."""

import asyncio
import logging

from config.config_loader import EngineConfig
from council.gateway import ModelGateway
from council.models import Message

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def _check_one(gateway: ModelGateway, model_id: str, engine: EngineConfig) -> tuple[str, bool, str]:
    """Ping a single model. Returns (model_id, ok, error_message)."""
    try:
        await asyncio.wait_for(
            gateway.call(model_id, [Message(role="user", content=_PING_PROMPT)], engine),
            timeout=_TIMEOUT_SEC,
        )
        return model_id, True, ""
    except Exception as exc:
        logger.debug("Health check failed for %s: %s", model_id, exc)
        return model_id, False, str(exc) or type(exc).__name__


async def run_health_checks(
    gateway: ModelGateway,
    engine: EngineConfig,
) -> dict[str, tuple[bool, str]]:
    """Ping all configured models one after another (the backend throttles bursts).

    Returns:
        Dict mapping model id -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = {}
    for model in engine.models:
        model_id, ok, err = await _check_one(gateway, model.id, engine)
        results[model_id] = (ok, err)
    return results
