# assess_core/progression.py
"""Which item is current and whether the learner may move.

One controller serves all three observed flows; the ``ProgressionMode``
variant only switches the few decisions that differ:

* ``flat``  - quiz, linear, last ``advance`` finalises.
* ``gated`` - quiz grouped by topic; the last item of a topic runs the mastery
  gate and a failed topic is cleared and retried before anything else opens.
* ``exam``  - free navigation, submit once ``required_answered`` items have
  content; an untouched compulsory item only asks for confirmation.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

from .answers import AnswerStore
from .config import TOPIC_MASTERY_PERCENT
from .errors import InvalidState, UnknownItem
from .items import group_by_topic
from .scoring import score_topic
from .types import Item, TopicGateResult


@dataclass(frozen=True)
class ProgressionMode:
    kind: Literal["flat", "gated", "exam"]
    gating_threshold: int = TOPIC_MASTERY_PERCENT
    required_answered: int = 0
    has_compulsory: bool = False

    @classmethod
    def flat(cls) -> "ProgressionMode":
        return cls("flat")

    @classmethod
    def gated(cls, threshold: int = TOPIC_MASTERY_PERCENT) -> "ProgressionMode":
        return cls("gated", gating_threshold=int(threshold))

    @classmethod
    def exam(cls, required: int, has_compulsory: bool = True) -> "ProgressionMode":
        return cls("exam", required_answered=int(required), has_compulsory=has_compulsory)

    @property
    def gating_enabled(self) -> bool:
        return self.kind == "gated"


@dataclass
class Move:
    """Outcome of ``advance``: where the cursor went and what else happened."""
    action: Literal["moved", "stayed", "finalize", "gate_failed"]
    gate: Optional[TopicGateResult] = None
    cleared: List[str] = field(default_factory=list)


class ProgressionController:
    def __init__(self, items: List[Item], answers: AnswerStore, mode: ProgressionMode):
        self.mode = mode
        self.answers = answers
        self.groups = group_by_topic(items)
        # gated mode walks topics as contiguous blocks
        self.order: List[Item] = (
            [it for grp in self.groups.values() for it in grp] if mode.gating_enabled else list(items)
        )
        self._pos: Dict[str, int] = {it.id: i for i, it in enumerate(self.order)}
        self.index = 0
        self.gate_status: Dict[str, str] = (
            {t: "PENDING" for t in self.groups} if mode.gating_enabled else {}
        )

    # ---- cursor ----
    @property
    def current(self) -> Item:
        return self.order[self.index]

    @property
    def at_end(self) -> bool:
        return self.index >= len(self.order) - 1

    def position_of(self, item_id: str) -> int:
        pos = self._pos.get(item_id)
        if pos is None:
            raise UnknownItem(item_id)
        return pos

    def _topic_bounds(self, topic: str) -> tuple[int, int]:
        grp = self.groups[topic]
        return self._pos[grp[0].id], self._pos[grp[-1].id]

    # ---- navigation ----
    def advance(self) -> Move:
        if self.mode.gating_enabled:
            topic = self.current.topic
            _, last = self._topic_bounds(topic)
            if self.index == last:
                return self.evaluate_topic(topic)
        if not self.at_end:
            self.index += 1
            return Move("moved")
        if self.mode.kind == "exam":
            return Move("stayed")
        return Move("finalize")

    def retreat(self) -> bool:
        if self.index == 0:
            return False
        if self.mode.gating_enabled:
            first, _ = self._topic_bounds(self.current.topic)
            if self.index == first:
                raise InvalidState("cannot move back into a mastered topic")
        self.index -= 1
        return True

    def go_to(self, item_id: str) -> bool:
        pos = self.position_of(item_id)
        if self.mode.gating_enabled:
            first, last = self._topic_bounds(self.current.topic)
            if not (first <= pos <= last):
                raise InvalidState(f"{item_id} is outside the unlocked topic {self.current.topic!r}")
        moved = pos != self.index
        self.index = pos
        return moved

    # ---- topic gate ----
    def evaluate_topic(self, topic: str) -> Move:
        items = self.groups[topic]
        score = score_topic(items, self.answers.as_mapping())
        passed = score >= self.mode.gating_threshold
        gate = TopicGateResult(topic=topic, score=score, passed=passed)
        if passed:
            self.gate_status[topic] = "PASS"
            _, last = self._topic_bounds(topic)
            if last >= len(self.order) - 1:
                return Move("finalize", gate=gate)
            self.index = last + 1
            return Move("moved", gate=gate)
        self.gate_status[topic] = "FAIL"
        cleared = self.answers.clear([it.id for it in items])
        self.index, _ = self._topic_bounds(topic)
        return Move("gate_failed", gate=gate, cleared=cleared)

    # ---- exam submission rules ----
    def compulsory_item(self) -> Optional[Item]:
        if not self.mode.has_compulsory:
            return None
        flagged = next((it for it in self.order if it.is_compulsory), None)
        return flagged or self.order[0]

    def answered_count(self) -> int:
        return self.answers.answered_count(it.id for it in self.order)

    def can_submit(self) -> bool:
        if self.mode.kind != "exam":
            return True
        return self.answered_count() >= self.mode.required_answered

    def requires_confirmation(self) -> bool:
        comp = self.compulsory_item()
        return comp is not None and not self.answers.is_answered(comp.id)
