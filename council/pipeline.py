"""Run trigger and status query: starts the three stages as a background task."""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from config.config_loader import EngineConfig, PacingConfig, PromptsConfig, engine_config_from_dict
from council.gateway import ModelGateway
from council.generation import run_stage1
from council.models import HistoryEntry, RunStage, RunStatus, Turn
from council.pacing import PacedLimiter
from council.review import run_stage2
from council.runs import InMemoryRunStore, RunStore
from council.synthesis import run_stage3

logger = logging.getLogger(__name__)

_TITLE_CHARS = 40
_GENERIC_ERROR = "An unexpected error occurred during the run."


@dataclass
class RunRequest:
    prompt: str
    config: EngineConfig
    conversation_id: str | None = None
    history: list[HistoryEntry] = field(default_factory=list)


def run_request_from_dict(payload: dict[str, Any], base: EngineConfig | None = None) -> RunRequest:
    """Build a RunRequest from a client payload ({prompt, config, conversationId, history}).

    Raises:
        ValueError: If the prompt is missing/blank or the config is invalid.
    """
    prompt = payload.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValueError("Prompt is required")
    config_raw = payload.get("config") or {}
    if not isinstance(config_raw, dict):
        raise ValueError(f"config must be an object, got {type(config_raw).__name__}")
    config = engine_config_from_dict(config_raw, base=base)

    history_raw = payload.get("history") or []
    if not isinstance(history_raw, list):
        raise ValueError(f"history must be a list, got {type(history_raw).__name__}")
    history = []
    for h in history_raw:
        if not isinstance(h, dict):
            raise ValueError(f"Invalid history entry: {h!r}")
        history.append(HistoryEntry(prompt=str(h.get("prompt", "")), response=str(h.get("response", ""))))
    return RunRequest(
        prompt=prompt,
        config=config,
        conversation_id=payload.get("conversationId") or payload.get("conversation_id"),
        history=history,
    )


class CouncilPipeline:
    """Owns the run store and launches one detached task per run."""

    def __init__(
        self,
        gateway: ModelGateway,
        prompts: PromptsConfig,
        store: RunStore | None = None,
        pacing: PacingConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._prompts = prompts
        self._store = store if store is not None else InMemoryRunStore()
        self._pacing = pacing or PacingConfig()
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def store(self) -> RunStore:
        return self._store

    def start(self, request: RunRequest) -> str:
        """Validate, create the run record, spawn the run task and return its id without awaiting it.

        Must be called from a running event loop.

        Raises:
            ValueError: Empty prompt. No run is created.
            ConfigurationError: Missing gateway credential. No run is created.
        """
        if not request.prompt or not request.prompt.strip():
            raise ValueError("Prompt is required")
        if not request.config.models:
            raise ValueError("At least one model must be configured")
        self._gateway.ensure_credentials()

        run_id = str(uuid.uuid4())
        self._store.update(run_id, id=run_id, stage=RunStage.STAGE1, progress=0)
        logger.info("Run %s initialized", run_id)

        task = asyncio.create_task(self.execute(run_id, request), name=f"council-run-{run_id}")
        self._tasks[run_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(run_id, None))
        return run_id

    def status(self, run_id: str) -> RunStatus | None:
        return self._store.get(run_id)

    def task_for(self, run_id: str) -> asyncio.Task | None:
        """The in-flight task for run_id, or None once it has finished."""
        return self._tasks.get(run_id)

    async def execute(self, run_id: str, request: RunRequest) -> None:
        """Run all three stages, recording progress. Never raises; failures end in the error stage."""
        logger.info("Starting run %s for prompt: %s", run_id, request.prompt[:80])
        try:
            await self._run_stages(run_id, request)
        except Exception as exc:
            logger.error("Run %s failed: %s", run_id, exc, exc_info=True)
            self._store.update(run_id, stage=RunStage.ERROR, error=str(exc) or _GENERIC_ERROR)

    async def _run_stages(self, run_id: str, request: RunRequest) -> None:
        prompt, engine, history = request.prompt, request.config, request.history

        logger.info("[Run %s] Stage 1 starting", run_id)
        self._store.update(run_id, stage=RunStage.STAGE1, progress=10)
        stage1 = await run_stage1(
            prompt, engine, self._gateway, self._prompts, history,
            limiter=PacedLimiter(self._pacing.stage1_stagger_sec, sleep=self._sleep),
        )
        turn_so_far: dict[str, Any] = {
            "user_prompt": prompt,
            "stage1_responses": [asdict(r) for r in stage1],
        }
        self._store.update(run_id, progress=40, result={"turns": [turn_so_far]})

        logger.info("[Run %s] Stage 2 starting", run_id)
        self._store.update(run_id, stage=RunStage.STAGE2, progress=50)
        stage2 = await run_stage2(
            prompt, stage1, engine, self._gateway, self._prompts, history,
            limiter=PacedLimiter(self._pacing.stage2_stagger_sec, sleep=self._sleep),
        )
        turn_so_far["stage2_reviews"] = [asdict(r) for r in stage2]
        self._store.update(run_id, progress=80, result={"turns": [turn_so_far]})

        logger.info("[Run %s] Stage 3 starting", run_id)
        self._store.update(run_id, stage=RunStage.STAGE3, progress=90)
        synthesis = await run_stage3(prompt, stage1, stage2, engine, self._gateway, self._prompts, history)

        now = time.time()
        turn = asdict(Turn(
            id=str(uuid.uuid4()),
            user_prompt=prompt,
            stage1_responses=stage1,
            stage2_reviews=stage2,
            synthesis_response=synthesis.content,
            synthesizer_model_id=synthesis.model_id,
            created_at=now,
        ))
        if request.conversation_id:
            result: dict[str, Any] = {"turn": turn}
        else:
            result = {
                "id": run_id,
                "title": prompt[:_TITLE_CHARS],
                "turns": [turn],
                "config": asdict(engine),
                "created_at": now,
            }
        self._store.update(run_id, stage=RunStage.COMPLETED, progress=100, result=result)
        logger.info("[Run %s] Completed (synthesizer: %s)", run_id, synthesis.model_id)
