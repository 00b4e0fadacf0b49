"""Versioned answers per report section, persisted as one flat JSON log per workspace."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List

from ragreport.core.errors import NotFoundError, PersistenceError
from ragreport.core.logging import get_logger
from ragreport.storage.documents import RESULTS, DocumentStore

logger = get_logger(__name__)

RESULTS_BLOB = "results.json"


@dataclass(frozen=True)
class ResultRecord:
    """One iteration of the answer for a section. Immutable once written."""

    section: str
    iteration_number: int
    question: str
    answer: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResultRecord":
        return cls(
            section=data['section'],
            iteration_number=int(data['iteration_number']),
            question=data.get('question', ''),
            answer=data.get('answer', ''),
        )


def next_iteration(records: Iterable[ResultRecord], section: str) -> int:
    return sum(1 for record in records if record.section == section) + 1


def latest_by_section(records: Iterable[ResultRecord]) -> Dict[str, ResultRecord]:
    """Highest iteration per section, keyed in order of each section's first appearance."""
    latest: Dict[str, ResultRecord] = {}
    for record in records:
        current = latest.get(record.section)
        if current is None or record.iteration_number > current.iteration_number:
            latest[record.section] = record
    return latest


class ResultsLog:
    """Read and replace the `results/results.json` blob of a workspace."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def load(self, workspace: str) -> List[ResultRecord]:
        try:
            raw = await self.store.read(workspace, RESULTS, RESULTS_BLOB)
        except NotFoundError:
            logger.debug(f"No existing results for {workspace}. Starting fresh.")
            return []
        try:
            entries = json.loads(raw)
            if not isinstance(entries, list):
                raise ValueError("results log is not a JSON array")
            return [ResultRecord.from_dict(entry) for entry in entries]
        except (ValueError, KeyError, TypeError) as exc:
            raise PersistenceError(f"Corrupt results log for workspace {workspace!r}: {exc}") from exc

    async def save(self, workspace: str, records: List[ResultRecord]) -> None:
        payload = json.dumps([record.to_dict() for record in records], indent=2, ensure_ascii=False)
        await self.store.write(workspace, RESULTS, RESULTS_BLOB, payload.encode("utf-8"))
        logger.info(f"Saved {len(records)} results for workspace {workspace}", extra={"workspace": workspace})
