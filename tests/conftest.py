"""Shared pytest fixtures."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from config.config_loader import EngineConfig, GatewayConfig, PacingConfig, PromptsConfig
from council.gateway import ModelGateway
from council.models import HistoryEntry, Message, ModelSpec, Stage1Response


class MockGateway(ModelGateway):
    """Test double ModelGateway.

    `replies` maps model id -> str, Exception, list of those (consumed in
    order) or a callable taking the message list. Unlisted models get
    `default`. Every call is recorded on the `call` AsyncMock.
    """

    def __init__(self, replies: dict[str, Any] | None = None, default: str = "Mock response") -> None:
        super().__init__(GatewayConfig(base_url="http://test", api_key_env="TEST_API_KEY"), client=MagicMock())
        self.replies = dict(replies or {})
        self.default = default
        self.call = AsyncMock(side_effect=self._reply)  # type: ignore[method-assign]

    async def _reply(
        self,
        model_id: str,
        messages: list[Message],
        engine: EngineConfig,
        json_mode: bool = False,
    ) -> str:
        reply = self.replies.get(model_id, self.default)
        if isinstance(reply, list):
            reply = reply.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(messages)
        return reply

    def calls_for(self, model_id: str) -> list:
        return [c for c in self.call.call_args_list if c.args[0] == model_id]


@pytest.fixture
def sample_gateway_config() -> GatewayConfig:
    return GatewayConfig(
        base_url="http://test",
        api_key_env="TEST_API_KEY",
        timeout_sec=5,
        retries=3,
        min_timeout_sec=2,
        max_timeout_sec=10,
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        review_system="Review the responses. Reply with JSON only.",
        synthesis_system="Synthesize the best answer.",
        emergency_note="NOTE: You are the emergency synthesizer.",
        stage1_system=None,
    )


@pytest.fixture
def sample_models() -> list[ModelSpec]:
    return [
        ModelSpec(id="meta/llama-4", name="Llama 4"),
        ModelSpec(id="openai/gpt-4.1", name="GPT-4.1"),
        ModelSpec(id="mistral-ai/codestral", name="Codestral"),
    ]


@pytest.fixture
def sample_engine_config(sample_models: list[ModelSpec]) -> EngineConfig:
    return EngineConfig(
        models=sample_models,
        synthesis_model="openai/gpt-5",
        temperature=0.7,
        max_tokens=2000,
    )


@pytest.fixture
def no_pacing() -> PacingConfig:
    return PacingConfig(stage1_stagger_sec=0, stage2_stagger_sec=0)


@pytest.fixture
def sample_history() -> list[HistoryEntry]:
    return [HistoryEntry(prompt="What is 1+1?", response="2")]


@pytest.fixture
def sample_stage1(sample_models: list[ModelSpec]) -> list[Stage1Response]:
    llama, gpt, codestral = sample_models
    return [
        Stage1Response(llama.id, llama.name, "Model A", "Answer from Llama."),
        Stage1Response(gpt.id, gpt.name, "Model B", "Answer from GPT."),
        Stage1Response(codestral.id, codestral.name, "Model C", "Answer from Codestral."),
    ]


@pytest.fixture
def mock_gateway() -> MockGateway:
    return MockGateway()
