"""Per-run anonymous labels ("Model A", "Model B", ...) and their reverse lookup.

Reviewers only ever see labels. Their output is mapped back to real model
names with a best-effort matcher: both sides are reduced to uppercase
alphanumerics and a key matches a label when the two are equal or one
contains the other. Keys that match nothing are dropped, never guessed.
"""

import logging
import re
from typing import Any

from council.models import ReviewJson, ReviewScore

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^A-Z0-9]")

_SCORE_MIN = 0.0
_SCORE_MAX = 10.0
_SCORE_DEFAULT = 5.0

NO_COMMENTARY = "No commentary provided."


def label_for(index: int) -> str:
    """Label for the index-th model: A..Z, then AA, AB, ... (bijective base 26)."""
    if index < 0:
        raise ValueError(f"Label index must be non-negative, got {index}")
    letters = ""
    n = index + 1
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return f"Model {letters}"


def normalize(text: str) -> str:
    return _NON_ALNUM.sub("", str(text).upper())


def coerce_score(value: Any) -> float:
    """Numbers in [0, 10] pass through; anything else becomes 5."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return _SCORE_DEFAULT
    if not _SCORE_MIN <= value <= _SCORE_MAX:
        return _SCORE_DEFAULT
    return float(value)


def _coerce_review_score(raw: Any) -> ReviewScore:
    if not isinstance(raw, dict):
        return ReviewScore()
    return ReviewScore(
        accuracy=coerce_score(raw.get("accuracy")),
        insight=coerce_score(raw.get("insight")),
        clarity=coerce_score(raw.get("clarity")),
    )


class LabelResolver:
    """Translate labels written by one reviewer back to real model names."""

    def __init__(self, mapping: dict[str, str]) -> None:
        self._normalized = [(normalize(label), name) for label, name in mapping.items()]

    def resolve(self, key: Any) -> str | None:
        clean_key = normalize(key)
        if not clean_key:
            return None
        for clean_label, name in self._normalized:
            if clean_label == clean_key:
                return name
        for clean_label, name in self._normalized:
            if clean_label in clean_key or clean_key in clean_label:
                return name
        logger.debug("Dropping unmatched review key %r", key)
        return None

    def translate(self, raw: dict[str, Any]) -> ReviewJson:
        """Build a ReviewJson keyed by real names from a reviewer's raw JSON object.

        Raises:
            ValueError: If raw is not a JSON object.
        """
        if not isinstance(raw, dict):
            raise ValueError(f"Review must be a JSON object, got {type(raw).__name__}")

        ranking: list[str] = []
        raw_ranking = raw.get("ranking") or []
        if isinstance(raw_ranking, list):
            for label in raw_ranking:
                name = self.resolve(label)
                if name and name not in ranking:
                    ranking.append(name)

        scores: dict[str, ReviewScore] = {}
        raw_scores = raw.get("scores") or {}
        if isinstance(raw_scores, dict):
            for label, score in raw_scores.items():
                name = self.resolve(label)
                if name:
                    scores[name] = _coerce_review_score(score)

        notes: dict[str, str] = {}
        raw_notes = raw.get("notes") or {}
        if isinstance(raw_notes, dict):
            for label, note in raw_notes.items():
                name = self.resolve(label)
                if name:
                    notes[name] = str(note)

        commentary = raw.get("overall_commentary")
        return ReviewJson(
            ranking=ranking,
            scores=scores,
            notes=notes,
            overall_commentary=str(commentary) if commentary else NO_COMMENTARY,
        )
