"""Stage 3: combine answers and reviews into one final answer, with an emergency fallback."""

import logging
from dataclasses import dataclass

from config.config_loader import EngineConfig, PromptsConfig
from council.context import history_text
from council.gateway import ModelGateway
from council.models import HistoryEntry, Message, Stage1Response, Stage2Review

logger = logging.getLogger(__name__)


class SynthesisError(RuntimeError):
    """Raised when no synthesizer, primary or fallback, produced an answer."""


@dataclass
class SynthesisResult:
    content: str
    model_id: str
    is_fallback: bool = False


def _format_digest(stage1: list[Stage1Response], stage2: list[Stage2Review]) -> tuple[str, str]:
    """Render (responses_text, reviews_text) for the synthesis prompt."""
    responses_text = "\n\n".join(
        f"### Response from {r.model_name}\n{r.content}" for r in stage1 if not r.failed
    )
    names = {r.model_id: r.model_name for r in stage1}
    reviews_text = "\n\n".join(
        f"Analysis by {names.get(rev.reviewer_model_id, 'Expert')}:\n"
        f"- Ranking: {' > '.join(rev.review_json.ranking)}\n"
        f"- Key Insight: {rev.review_json.overall_commentary}"
        for rev in stage2
    )
    return responses_text, reviews_text


def build_synthesis_user_content(
    prompt: str,
    stage1: list[Stage1Response],
    stage2: list[Stage2Review],
    history: list[HistoryEntry],
    history_chars: int | None = None,
) -> str:
    """Prompt body for the synthesizer. Prior answers are cut to `history_chars` each when set."""
    responses_text, reviews_text = _format_digest(stage1, stage2)
    context = f"Conversation History:\n{history_text(history, history_chars)}\n\n" if history else ""
    return (
        f"{context}Latest Prompt: {prompt}\n\n"
        f"Candidate Model Responses:\n{responses_text}\n\n"
        f"Peer Review Analysis:\n{reviews_text or 'No peer reviews available.'}\n\n"
        "Produce the final synthesis:"
    )


def pick_fallback(
    stage1: list[Stage1Response],
    preferred_vendors: list[str],
    exclude: str | None = None,
) -> Stage1Response | None:
    """First working model from a preferred vendor (in vendor order), else the first working model.

    `exclude` is the model id that already failed as primary synthesizer.
    """
    working = [r for r in stage1 if not r.failed and r.model_id != exclude]
    if not working:
        return None
    for vendor in preferred_vendors:
        for r in working:
            if vendor.lower() in r.model_id.lower():
                return r
    return working[0]


async def _synthesize_with(
    gateway: ModelGateway,
    model_id: str,
    system_prompt: str,
    user_content: str,
    engine: EngineConfig,
) -> str:
    content = await gateway.call(
        model_id,
        [Message(role="system", content=system_prompt), Message(role="user", content=user_content)],
        engine,
    )
    if not content.strip():
        raise SynthesisError(f"Synthesizer {model_id} returned empty content")
    return content


async def run_stage3(
    prompt: str,
    stage1: list[Stage1Response],
    stage2: list[Stage2Review],
    engine: EngineConfig,
    gateway: ModelGateway,
    prompts: PromptsConfig,
    history: list[HistoryEntry] | None = None,
) -> SynthesisResult:
    """Synthesize the final answer.

    Args:
        prompt: The latest user prompt.
        stage1: All Stage 1 entries, failed ones included.
        stage2: Collected peer reviews.
        engine: Engine config; `synthesis_model` is the primary synthesizer.
        gateway: Backend gateway.
        prompts: Prompt templates from config.
        history: Prior turns of the conversation.

    Returns:
        SynthesisResult naming the model that actually produced the answer.

    Raises:
        SynthesisError: If the primary fails and no other working Stage 1
            model exists, or the emergency synthesizer fails too.
    """
    user_content = build_synthesis_user_content(
        prompt, stage1, stage2, history or [], prompts.synthesis_history_chars,
    )

    logger.info("Synthesis via primary: %s", engine.synthesis_model)
    try:
        content = await _synthesize_with(
            gateway, engine.synthesis_model, prompts.synthesis_system, user_content, engine,
        )
        return SynthesisResult(content=content, model_id=engine.synthesis_model)
    except Exception as exc:
        logger.warning("Primary synthesizer %s failed: %s", engine.synthesis_model, exc)

    fallback = pick_fallback(stage1, engine.preferred_fallback_vendors, exclude=engine.synthesis_model)
    if fallback is None:
        if any(not r.failed for r in stage1):
            raise SynthesisError(
                f"Primary synthesizer {engine.synthesis_model} failed and no other working model is available."
            )
        raise SynthesisError(
            "Critical failure: all models failed to provide a response. "
            "Check your API credential and rate limits."
        )

    logger.warning("Appointed %s as emergency synthesizer", fallback.model_name)
    system_prompt = f"{prompts.synthesis_system}\n{prompts.emergency_note}"
    try:
        content = await _synthesize_with(gateway, fallback.model_id, system_prompt, user_content, engine)
    except SynthesisError:
        raise
    except Exception as exc:
        raise SynthesisError(f"Emergency synthesizer {fallback.model_name} failed: {exc}") from exc
    return SynthesisResult(content=content, model_id=fallback.model_id, is_fallback=True)
