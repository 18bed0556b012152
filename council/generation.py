"""Stage 1: every configured model answers the prompt independently."""

import logging

from config.config_loader import EngineConfig, PromptsConfig
from council.anonymization import label_for
from council.context import history_messages
from council.gateway import ModelGateway
from council.models import HistoryEntry, Message, ModelSpec, Stage1Response
from council.pacing import PacedLimiter

logger = logging.getLogger(__name__)


def build_stage1_messages(
    prompt: str,
    history: list[HistoryEntry],
    system_prompt: str | None = None,
) -> list[Message]:
    messages = history_messages(history)
    if system_prompt:
        messages.append(Message(role="system", content=system_prompt))
    messages.append(Message(role="user", content=prompt))
    return messages


async def run_stage1(
    prompt: str,
    engine: EngineConfig,
    gateway: ModelGateway,
    prompts: PromptsConfig,
    history: list[HistoryEntry] | None = None,
    limiter: PacedLimiter | None = None,
) -> list[Stage1Response]:
    """Collect one answer per configured model, in configuration order.

    A model that fails after the gateway's retries yields an entry with
    `error` set instead of raising, so the result always has one entry per
    configured model.
    """
    limiter = limiter or PacedLimiter()
    messages = build_stage1_messages(prompt, history or [], prompts.stage1_system)

    async def _answer(indexed: tuple[int, ModelSpec]) -> Stage1Response:
        index, model = indexed
        label = label_for(index)
        try:
            content = await gateway.call(model.id, messages, engine)
        except Exception as exc:
            logger.warning("Stage 1 failed for %s: %s", model.id, exc)
            return Stage1Response.from_failure(model, label, str(exc) or type(exc).__name__)
        return Stage1Response(model_id=model.id, model_name=model.name, label=label, content=content)

    logger.info("Stage 1 starting with %d models", len(engine.models))
    responses = await limiter.map(_answer, list(enumerate(engine.models)))
    logger.info(
        "Stage 1 complete: %d/%d models succeeded",
        sum(1 for r in responses if not r.failed),
        len(responses),
    )
    return responses
