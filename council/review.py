"""Stage 2: each successful model peer-reviews the anonymized answers of the others."""

import json
import logging

from config.config_loader import EngineConfig, PromptsConfig
from council.anonymization import LabelResolver
from council.context import history_text
from council.gateway import ModelGateway
from council.models import HistoryEntry, Message, ModelSpec, Stage1Response, Stage2Review
from council.pacing import PacedLimiter

logger = logging.getLogger(__name__)


def select_candidates(reviewer_id: str, stage1: list[Stage1Response]) -> list[Stage1Response]:
    """Non-failed answers from every model except the reviewer."""
    return [r for r in stage1 if r.model_id != reviewer_id and not r.failed]


def _anonymize(candidates: list[Stage1Response], excerpt_chars: int | None) -> str:
    parts = []
    for r in candidates:
        content = r.content if excerpt_chars is None else r.content[:excerpt_chars]
        parts.append(f"### {r.label}\n{content}")
    return "\n\n".join(parts)


def build_review_messages(
    prompt: str,
    candidates: list[Stage1Response],
    prompts: PromptsConfig,
    history: list[HistoryEntry],
) -> list[Message]:
    context = ""
    if history:
        context = f"Context of previous conversation:\n{history_text(history)}\n\n"
    user_content = (
        f"{context}Latest Prompt: {prompt}\n\n"
        f"Candidate Responses for the Latest Prompt:\n"
        f"{_anonymize(candidates, prompts.review_excerpt_chars)}"
    )
    return [
        Message(role="system", content=prompts.review_system),
        Message(role="user", content=user_content),
    ]


async def run_stage2(
    prompt: str,
    stage1: list[Stage1Response],
    engine: EngineConfig,
    gateway: ModelGateway,
    prompts: PromptsConfig,
    history: list[HistoryEntry] | None = None,
    limiter: PacedLimiter | None = None,
) -> list[Stage2Review]:
    """Collect peer reviews with labels translated back to real model names.

    Reviewers whose own Stage 1 answer failed are not asked. A reviewer with
    nothing to review is skipped without a call. Reviewers that fail or
    return unparseable JSON are dropped; this stage never raises for them.
    """
    limiter = limiter or PacedLimiter()
    history = history or []
    failed_ids = {r.model_id for r in stage1 if r.failed}
    reviewers = [m for m in engine.models if m.id not in failed_ids]

    async def _review(reviewer: ModelSpec) -> Stage2Review | None:
        candidates = select_candidates(reviewer.id, stage1)
        if not candidates:
            logger.info("Stage 2: %s has nothing to review, skipping", reviewer.id)
            return None

        mapping = {r.label: r.model_name for r in candidates}
        resolver = LabelResolver(mapping)
        messages = build_review_messages(prompt, candidates, prompts, history)
        try:
            content = await gateway.call(reviewer.id, messages, engine, json_mode=True)
            review_json = resolver.translate(json.loads(content))
        except Exception as exc:
            logger.warning("Stage 2 failed for %s: %s", reviewer.id, exc)
            return None
        return Stage2Review(
            reviewer_model_id=reviewer.id,
            review_json=review_json,
            anonymized_mapping_used=mapping,
        )

    logger.info("Stage 2 starting with %d reviewers", len(reviewers))
    results = await limiter.map(_review, reviewers)
    reviews = [r for r in results if r is not None]
    logger.info("Stage 2 complete: %d reviews collected", len(reviews))
    return reviews
