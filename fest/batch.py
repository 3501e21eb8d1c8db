# fest/batch.py
"""Accumulator for operations that process a list of items independently."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence


@dataclass
class BatchOutcome:
    """Per-item results plus named error buckets.

    ``recorded_count`` counts successes; every failure lands in exactly one
    bucket, so ``recorded_count + failed_count == total``.
    """

    total: int
    buckets: Sequence[str] = ("errors",)
    recorded_count: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)
    errors: Dict[str, List[Dict[str, Any]]] = field(init=False)

    def __post_init__(self) -> None:
        self.errors = {name: [] for name in self.buckets}

    def record(self, item: Dict[str, Any]) -> None:
        self.recorded_count += 1
        self.results.append(item)

    def fail(self, bucket: str, item: Dict[str, Any]) -> None:
        if bucket not in self.errors:
            raise KeyError(f"unknown error bucket: {bucket}")
        self.errors[bucket].append(item)

    @property
    def failed_count(self) -> int:
        return sum(len(items) for items in self.errors.values())

    @property
    def status_code(self) -> int:
        if self.recorded_count == 0:
            return 400
        if self.recorded_count < self.total:
            return 207
        return 201

    def message(self, *, verb: str, noun: str) -> str:
        """Render the tri-state summary, e.g. verb="record", noun="round results"."""

        if self.recorded_count == 0:
            return f"Failed to {verb} any {noun}"
        if self.recorded_count < self.total:
            past = _past_tense(verb)
            return f"Partially {past} {noun}: {self.recorded_count}/{self.total} succeeded"
        return f"{noun[:1].upper()}{noun[1:]} {_past_tense(verb)} successfully"

    def to_data(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "recorded_count": self.recorded_count,
            "results": self.results,
        }
        data.update(self.errors)
        return data


def _past_tense(verb: str) -> str:
    return verb + "d" if verb.endswith("e") else verb + "ed"


__all__ = ["BatchOutcome"]
