"""Per-item results for batch producers (webhook deliveries, confirmation sweeps)."""
from dataclasses import dataclass, field
from typing import List, Optional

SUCCEEDED = "succeeded"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class ItemOutcome:
    status: str
    reason: str = ""
    item_id: Optional[str] = None

    @classmethod
    def succeeded(cls, item_id: Optional[str] = None, reason: str = "") -> "ItemOutcome":
        return cls(SUCCEEDED, reason, item_id)

    @classmethod
    def skipped(cls, reason: str, item_id: Optional[str] = None) -> "ItemOutcome":
        return cls(SKIPPED, reason, item_id)

    @classmethod
    def failed(cls, reason: str, item_id: Optional[str] = None) -> "ItemOutcome":
        return cls(FAILED, reason, item_id)


@dataclass
class BatchSummary:
    outcomes: List[ItemOutcome] = field(default_factory=list)

    def add(self, outcome: ItemOutcome) -> ItemOutcome:
        self.outcomes.append(outcome)
        return outcome

    def _count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return self._count(SUCCEEDED)

    @property
    def skipped(self) -> int:
        return self._count(SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(FAILED)

    def as_dict(self) -> dict:
        return {
            "processed": self.total,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
        }
