from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple


@dataclass
class UnitOutcome:
    """Result of one unit of pipeline work (one inbox file or one crypt tag).

    Exactly one of ``result`` / ``error`` is set for processed or failed units;
    a skipped unit carries neither.
    """

    name: str
    tag: Optional[str] = None
    result: Any = None
    error: Optional[BaseException] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.skipped


@dataclass
class RunSummary:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)
    committed: bool = False

    @property
    def ok(self) -> bool:
        return self.failed == 0

    @classmethod
    def from_outcomes(cls, outcomes: List[UnitOutcome]) -> "RunSummary":
        summary = cls()
        for o in outcomes:
            if o.error is not None:
                summary.failed += 1
                summary.errors.append((o.name, f"{type(o.error).__name__}: {o.error}"))
            elif o.skipped:
                summary.skipped += 1
            else:
                summary.processed += 1
        return summary

    def describe(self) -> str:
        return f"Summary: processed={self.processed} failed={self.failed} skipped={self.skipped}"
