"""Tests for council/synthesis.py (Stage 3)."""

import pytest

from council.gateway import GatewayError
from council.models import HistoryEntry, ModelSpec, ReviewJson, Stage1Response, Stage2Review
from council.synthesis import (
    SynthesisError,
    build_synthesis_user_content,
    pick_fallback,
    run_stage3,
)
from tests.conftest import MockGateway


def _fail(entry: Stage1Response) -> Stage1Response:
    return Stage1Response.from_failure(ModelSpec(entry.model_id, entry.model_name), entry.label, "down")


@pytest.fixture
def sample_reviews() -> list[Stage2Review]:
    return [
        Stage2Review(
            reviewer_model_id="meta/llama-4",
            review_json=ReviewJson(
                ranking=["Codestral", "GPT-4.1"],
                overall_commentary="Codestral was most precise.",
            ),
            anonymized_mapping_used={"Model B": "GPT-4.1", "Model C": "Codestral"},
        )
    ]


def test_user_content_contains_answers_and_reviews(sample_stage1, sample_reviews, sample_history):
    content = build_synthesis_user_content("What is 2+2?", sample_stage1, sample_reviews, sample_history)
    assert "### Response from Llama 4\nAnswer from Llama." in content
    assert "Analysis by Llama 4" in content
    assert "Codestral > GPT-4.1" in content
    assert "Codestral was most precise." in content
    assert "Conversation History" in content
    assert "Latest Prompt: What is 2+2?" in content


def test_user_content_skips_failed_answers(sample_stage1):
    sample_stage1[0] = _fail(sample_stage1[0])
    content = build_synthesis_user_content("Q", sample_stage1, [], [])
    assert "Llama 4" not in content
    assert "ERROR:" not in content
    assert "No peer reviews available." in content


def test_pick_fallback_prefers_vendor_order(sample_stage1):
    assert pick_fallback(sample_stage1, ["openai", "meta"]).model_id == "openai/gpt-4.1"
    assert pick_fallback(sample_stage1, ["mistral"]).model_id == "mistral-ai/codestral"


def test_pick_fallback_first_working_when_no_vendor_matches(sample_stage1):
    sample_stage1[0] = _fail(sample_stage1[0])
    assert pick_fallback(sample_stage1, ["anthropic"]).model_id == "openai/gpt-4.1"


def test_pick_fallback_skips_failed_preferred_vendor(sample_stage1):
    sample_stage1[1] = _fail(sample_stage1[1])
    assert pick_fallback(sample_stage1, ["openai"]).model_id == "meta/llama-4"


def test_pick_fallback_none_when_all_failed(sample_stage1):
    assert pick_fallback([_fail(r) for r in sample_stage1], ["openai"]) is None


async def test_primary_synthesizer_used(sample_stage1, sample_reviews, sample_engine_config, sample_prompts_config):
    gateway = MockGateway({"openai/gpt-5": "## Final\n4"})
    result = await run_stage3("Q", sample_stage1, sample_reviews, sample_engine_config, gateway, sample_prompts_config)

    assert result.content == "## Final\n4"
    assert result.model_id == "openai/gpt-5"
    assert result.is_fallback is False
    (call,) = gateway.call.call_args_list
    assert call.args[1][0].content == sample_prompts_config.synthesis_system


async def test_fallback_on_primary_failure(sample_stage1, sample_reviews, sample_engine_config, sample_prompts_config):
    sample_engine_config.preferred_fallback_vendors = ["openai"]
    gateway = MockGateway({
        "openai/gpt-5": GatewayError("openai/gpt-5", "RATE_LIMIT: slow down"),
        "openai/gpt-4.1": "Fallback synthesis",
    })
    result = await run_stage3("Q", sample_stage1, sample_reviews, sample_engine_config, gateway, sample_prompts_config)

    assert result.content == "Fallback synthesis"
    assert result.model_id == "openai/gpt-4.1"
    assert result.is_fallback is True
    primary_call, fallback_call = gateway.call.call_args_list
    assert sample_prompts_config.emergency_note in fallback_call.args[1][0].content
    assert fallback_call.args[1][1].content == primary_call.args[1][1].content


async def test_empty_primary_output_triggers_fallback(sample_stage1, sample_engine_config, sample_prompts_config):
    gateway = MockGateway({"openai/gpt-5": "   ", "meta/llama-4": "Real answer"})
    result = await run_stage3("Q", sample_stage1, [], sample_engine_config, gateway, sample_prompts_config)
    assert result.model_id == "meta/llama-4"


async def test_all_models_failed_raises(sample_stage1, sample_engine_config, sample_prompts_config):
    stage1 = [_fail(r) for r in sample_stage1]
    gateway = MockGateway({"openai/gpt-5": GatewayError("openai/gpt-5", "down")})

    with pytest.raises(SynthesisError, match="all models failed"):
        await run_stage3("Q", stage1, [], sample_engine_config, gateway, sample_prompts_config)


async def test_fallback_failure_raises_synthesis_error(sample_stage1, sample_engine_config, sample_prompts_config):
    gateway = MockGateway({
        "openai/gpt-5": GatewayError("openai/gpt-5", "down"),
        "meta/llama-4": GatewayError("meta/llama-4", "also down"),
    })
    with pytest.raises(SynthesisError, match="also down"):
        await run_stage3("Q", sample_stage1, [], sample_engine_config, gateway, sample_prompts_config)


def test_pick_fallback_excludes_failed_primary(sample_stage1):
    assert pick_fallback(sample_stage1, ["openai"], exclude="openai/gpt-4.1").model_id == "meta/llama-4"


async def test_fallback_skips_council_member_that_failed_as_primary(
    sample_stage1, sample_engine_config, sample_prompts_config
):
    sample_engine_config.synthesis_model = "openai/gpt-4.1"
    sample_engine_config.preferred_fallback_vendors = ["openai"]
    gateway = MockGateway({
        "openai/gpt-4.1": GatewayError("openai/gpt-4.1", "RATE_LIMIT: exhausted"),
        "meta/llama-4": "Llama synthesis",
    })

    result = await run_stage3("Q", sample_stage1, [], sample_engine_config, gateway, sample_prompts_config)

    assert result.model_id == "meta/llama-4"
    assert result.is_fallback is True
    assert [c.args[0] for c in gateway.call.call_args_list] == ["openai/gpt-4.1", "meta/llama-4"]


async def test_only_working_model_is_failed_primary(sample_stage1, sample_engine_config, sample_prompts_config):
    stage1 = [sample_stage1[0], _fail(sample_stage1[1]), _fail(sample_stage1[2])]
    sample_engine_config.synthesis_model = "meta/llama-4"
    gateway = MockGateway({"meta/llama-4": GatewayError("meta/llama-4", "down")})

    with pytest.raises(SynthesisError, match="no other working model"):
        await run_stage3("Q", stage1, [], sample_engine_config, gateway, sample_prompts_config)
    gateway.call.assert_awaited_once()


async def test_synthesis_history_is_condensed(sample_stage1, sample_engine_config, sample_prompts_config):
    sample_prompts_config.synthesis_history_chars = 5
    history = [HistoryEntry(prompt="Earlier question", response="A very long earlier answer")]
    gateway = MockGateway({"openai/gpt-5": "Final"})

    await run_stage3("Q", sample_stage1, [], sample_engine_config, gateway, sample_prompts_config, history)

    user_content = gateway.call.call_args.args[1][1].content
    assert "Q: Earlier question\nA: A ver..." in user_content
    assert "long earlier answer" not in user_content
