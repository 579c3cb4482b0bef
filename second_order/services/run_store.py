import copy
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from second_order.core.errors import RunStoreError
from second_order.core.types import HoldingInput, UniverseRow

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    return uuid.uuid4().hex


@dataclass
class RunSnapshot:
    """Audit record of one analysis run, successful or failed."""
    run_id: str
    statement: str
    probability: float
    horizon_months: int
    model_name: str
    prompt_version: str
    computed_bias_score: float
    bias_label: str
    payload: Dict[str, Any]
    ok: bool = True
    user_id: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class InMemoryRunRepository:
    """
    Read side for saved portfolio scenarios and universe versions.

    Lookups are owner-scoped: a record saved for one user is invisible to
    another. Missing or foreign refs return None.
    """

    def __init__(self):
        self._scenarios: Dict[str, Tuple[Optional[str], List[HoldingInput]]] = {}
        self._universes: Dict[str, Tuple[Optional[str], List[UniverseRow]]] = {}
        self._lock = threading.Lock()

    def add_scenario(self, ref: str, holdings: List[HoldingInput], user_id: Optional[str] = None) -> None:
        with self._lock:
            self._scenarios[ref] = (user_id, copy.deepcopy(list(holdings)))

    def add_universe(self, ref: str, rows: List[UniverseRow], user_id: Optional[str] = None) -> None:
        with self._lock:
            self._universes[ref] = (user_id, copy.deepcopy(list(rows)))

    @staticmethod
    def _owned(entry, user_id: Optional[str]):
        if entry is None or entry[0] != user_id:
            return None
        return copy.deepcopy(entry[1])

    def load_scenario(self, ref: str, user_id: Optional[str] = None) -> Optional[List[HoldingInput]]:
        with self._lock:
            entry = self._scenarios.get(ref)
        return self._owned(entry, user_id)

    def load_universe(self, ref: str, user_id: Optional[str] = None) -> Optional[List[UniverseRow]]:
        with self._lock:
            entry = self._universes.get(ref)
        return self._owned(entry, user_id)


class InMemoryRunStore:
    """
    Write side: persists run snapshots all-or-nothing.

    A snapshot is staged (deep-copied and checked for JSON-serializability)
    outside the lock, then committed under the lock in a single assignment,
    so a failed save leaves no partial record.
    """

    def __init__(self):
        self._runs: Dict[str, RunSnapshot] = {}
        self._lock = threading.Lock()

    def _stage(self, snapshot: RunSnapshot) -> RunSnapshot:
        if not snapshot.run_id:
            raise RunStoreError("run_id is required")
        staged = copy.deepcopy(snapshot)
        try:
            json.dumps(staged.payload)
        except (TypeError, ValueError) as e:
            raise RunStoreError(f"Run payload is not serializable: {e}") from e
        return staged

    def _commit(self, staged: RunSnapshot) -> str:
        with self._lock:
            if staged.run_id in self._runs:
                raise RunStoreError(f"Run already persisted: {staged.run_id}")
            self._runs[staged.run_id] = staged
        return staged.run_id

    def save_run(self, snapshot: RunSnapshot) -> str:
        staged = self._stage(snapshot)
        staged.ok = True
        run_id = self._commit(staged)
        logger.info("Run persisted", extra={"run_id": run_id, "bias_label": staged.bias_label})
        return run_id

    def save_failure(self, snapshot: RunSnapshot) -> str:
        staged = self._stage(snapshot)
        staged.ok = False
        run_id = self._commit(staged)
        logger.info("Failure snapshot persisted", extra={"run_id": run_id})
        return run_id

    def get(self, run_id: str) -> Optional[RunSnapshot]:
        with self._lock:
            snapshot = self._runs.get(run_id)
        return copy.deepcopy(snapshot) if snapshot else None

    def list_runs(self, user_id: Optional[str] = None) -> List[RunSnapshot]:
        with self._lock:
            snapshots = [s for s in self._runs.values() if s.user_id == user_id]
        return copy.deepcopy(snapshots)
