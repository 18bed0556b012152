"""Run tracker: the status record a polling client reads while a run is in flight.

Records live for the lifetime of the process and are never deleted; there is
no persistence. Each run id is written only by the task that owns the run,
so no locking is needed. Readers may see a slightly stale snapshot.
"""

import copy
from abc import ABC, abstractmethod
from dataclasses import fields, replace
from typing import Any

from council.models import RunStatus

_FIELDS = {f.name for f in fields(RunStatus)}


class RunStore(ABC):
    """Storage for RunStatus records keyed by run id."""

    @abstractmethod
    def get(self, run_id: str) -> RunStatus | None:
        """Return a snapshot of the run, or None if the id is unknown."""
        ...

    @abstractmethod
    def update(self, run_id: str, **changes: Any) -> RunStatus:
        """Merge changes into the run (creating it as idle/0 if absent) and return the result."""
        ...


class InMemoryRunStore(RunStore):
    """Dict-backed store. Snapshots are deep copies so stored records cannot be mutated by readers."""

    def __init__(self) -> None:
        self._runs: dict[str, RunStatus] = {}

    def get(self, run_id: str) -> RunStatus | None:
        run = self._runs.get(run_id)
        return copy.deepcopy(run) if run is not None else None

    def update(self, run_id: str, **changes: Any) -> RunStatus:
        unknown = set(changes) - _FIELDS
        if unknown:
            raise TypeError(f"Unknown RunStatus fields: {', '.join(sorted(unknown))}")
        existing = self._runs.get(run_id) or RunStatus(id=run_id)
        merged = replace(existing, **copy.deepcopy(changes))
        self._runs[run_id] = merged
        return copy.deepcopy(merged)

    def __len__(self) -> int:
        return len(self._runs)
