from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Outcome(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StageResult:
    """Resultado de procesar un mensaje o un estado del webhook."""

    outcome: Outcome
    stage: str
    reason: str = ""
    ref: Optional[str] = None  # wamid o phone_number_id

    @classmethod
    def ok(cls, stage: str, reason: str = "", ref: Optional[str] = None) -> "StageResult":
        return cls(Outcome.OK, stage, reason, ref)

    @classmethod
    def skip(cls, stage: str, reason: str, ref: Optional[str] = None) -> "StageResult":
        return cls(Outcome.SKIPPED, stage, reason, ref)

    @classmethod
    def fail(cls, stage: str, reason: str, ref: Optional[str] = None) -> "StageResult":
        return cls(Outcome.FAILED, stage, reason, ref)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "stage": self.stage,
            "reason": self.reason,
            "ref": self.ref,
        }


@dataclass
class BatchReport:
    results: List[StageResult] = field(default_factory=list)

    def add(self, result: StageResult) -> StageResult:
        self.results.append(result)
        return result

    def extend(self, results: List[StageResult]) -> None:
        self.results.extend(results)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def summary(self) -> Dict[str, int]:
        return {o.value: self.count(o) for o in Outcome}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary(),
            "results": [r.to_dict() for r in self.results],
        }
