"""Pure dataclasses for the council pipeline. No I/O, no deps."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

ERROR_PREFIX = "ERROR:"


@dataclass(frozen=True)
class ModelSpec:
    id: str      # backend model identifier, e.g. "openai/o3"
    name: str    # display name


@dataclass
class Message:
    role: str    # "user", "assistant" or "system"
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class HistoryEntry:
    prompt: str
    response: str


@dataclass
class Stage1Response:
    model_id: str
    model_name: str
    label: str                 # "Model A", "Model B", ...
    content: str
    error: str | None = None   # set only when the model failed

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def from_failure(cls, model: ModelSpec, label: str, message: str) -> "Stage1Response":
        return cls(
            model_id=model.id,
            model_name=model.name,
            label=label,
            content=f"{ERROR_PREFIX} {message}",
            error=message,
        )


@dataclass
class ReviewScore:
    accuracy: float = 5.0
    insight: float = 5.0
    clarity: float = 5.0


@dataclass
class ReviewJson:
    ranking: list[str] = field(default_factory=list)           # model names, best first
    scores: dict[str, ReviewScore] = field(default_factory=dict)
    notes: dict[str, str] = field(default_factory=dict)
    overall_commentary: str = ""


@dataclass
class Stage2Review:
    reviewer_model_id: str
    review_json: ReviewJson
    anonymized_mapping_used: dict[str, str]   # label -> model name


class RunStage(str, Enum):
    IDLE = "idle"
    STAGE1 = "stage1"
    STAGE2 = "stage2"
    STAGE3 = "stage3"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class RunStatus:
    id: str
    stage: RunStage = RunStage.IDLE
    progress: int = 0
    error: str | None = None
    result: dict[str, Any] | None = None


@dataclass
class Turn:
    id: str
    user_prompt: str
    stage1_responses: list[Stage1Response]
    stage2_reviews: list[Stage2Review]
    synthesis_response: str
    synthesizer_model_id: str
    created_at: float
