from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional, Literal, Tuple

ItemKind = Literal["SINGLE_CHOICE", "TRUE_FALSE", "FILL_IN_GAP", "MULTI_PART_ESSAY"]
CHOICE_KINDS = ("SINGLE_CHOICE", "TRUE_FALSE")
SessionMode = Literal["quiz", "exam"]
Phase = Literal["IN_PROGRESS", "TOPIC_GATE_SHOWN", "FINALIZING", "COMPLETE"]
GateStatus = Literal["PENDING", "PASS", "FAIL"]
FinalizedBy = Literal["submit", "timer", "last_item", "discard"]


@dataclass(frozen=True)
class Part:
    label: str; text: str; points: int
    hints: Tuple[str, ...] = ()   # provider-only, never read by the engine


@dataclass(frozen=True)
class Item:
    id: str; topic: str; kind: ItemKind; text: str
    options: Tuple[str, ...] = ()
    correct_index: Optional[int] = None
    correct_text: Optional[str] = None
    parts: Tuple[Part, ...] = ()
    is_compulsory: bool = False
    explanation: str = ""

    @property
    def total_points(self) -> int:
        return sum(p.points for p in self.parts)

    @property
    def is_essay(self) -> bool:
        return self.kind == "MULTI_PART_ESSAY"

    def part(self, label: str) -> Optional[Part]:
        return next((p for p in self.parts if p.label == label), None)


@dataclass
class Answer:
    item_id: str
    selected_index: int = -1
    text: Optional[str] = None
    parts: Dict[str, str] = field(default_factory=dict)

    def is_answered(self, item: Item) -> bool:
        if item.is_essay:
            return any((v or "").strip() for v in self.parts.values())
        if item.kind == "FILL_IN_GAP":
            return bool((self.text or "").strip())
        return self.selected_index >= 0


@dataclass(frozen=True)
class ClampedScore:
    item_id: str
    part_label: str
    raw: object
    clamped: float


@dataclass(frozen=True)
class TopicPerformance:
    topic: str
    score: int
    status: Literal["Strength", "Weakness", "Average"]
    gate: Optional[GateStatus] = None


@dataclass(frozen=True)
class QuizItemResult:
    item_id: str; topic: str; is_correct: bool
    selected_index: int = -1
    text: Optional[str] = None


@dataclass(frozen=True)
class PartScore:
    label: str
    score: float
    max_points: int
    feedback: str = ""


@dataclass(frozen=True)
class ExamItemResult:
    item_id: str; topic: str; attempted: bool
    total_score: float
    part_scores: Tuple[PartScore, ...] = ()
    feedback: str = ""


@dataclass(frozen=True)
class Result:
    session_id: str
    mode: SessionMode
    status: Literal["graded", "discarded"]
    score: float
    max_score: float
    passed: bool
    finalized_by: FinalizedBy
    quiz_items: Tuple[QuizItemResult, ...] = ()
    exam_items: Tuple[ExamItemResult, ...] = ()
    topics: Tuple[TopicPerformance, ...] = ()
    warnings: Tuple[ClampedScore, ...] = ()
    correct_count: int = 0
    total_items: int = 0

    @property
    def discarded(self) -> bool:
        return self.status == "discarded"


# ---- events (engine -> caller) ----
@dataclass(frozen=True)
class ItemChanged:
    item_id: str; index: int


@dataclass(frozen=True)
class TopicGateResult:
    topic: str; score: int; passed: bool


@dataclass(frozen=True)
class TimerTick:
    remaining: int


@dataclass(frozen=True)
class SessionComplete:
    result: Result


@dataclass(frozen=True)
class InvalidOperation:
    reason: str


SessionEvent = ItemChanged | TopicGateResult | TimerTick | SessionComplete | InvalidOperation
