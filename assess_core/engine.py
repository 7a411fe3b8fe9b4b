# assess_core/engine.py
from __future__ import annotations
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Mapping, Optional
import logging, threading, uuid

from .types import (
    Answer, Item, Phase, Result, ExamItemResult, QuizItemResult, PartScore, TopicPerformance,
    ItemChanged, TimerTick, SessionComplete, InvalidOperation, SessionEvent, ClampedScore,
)
from .answers import AnswerStore
from .config import SessionConfig, DEBUG_TRACE, TRACE_FIELDS, TICK_SECONDS
from .errors import EngineError, GradingError, InvalidItems, InvalidState, PrematureSubmit
from .grading import GradingProvider, ItemGrade, grade_from_dict
from .items import validate_items
from .progression import Move, ProgressionController, ProgressionMode
from .scoring import (
    aggregate_essay_item, aggregate_session, quiz_percentage, score_single_response_item,
    topic_breakdown, topic_status, _round_half_up,
)
from .timing import IntervalTicker, SessionSignal, TimingPolicy


log = logging.getLogger(__name__)

Listener = Callable[[SessionEvent], None]

_OPEN_PHASES = ("IN_PROGRESS", "TOPIC_GATE_SHOWN")


def _emit_trace(**values: object) -> None:
    if not DEBUG_TRACE:
        return
    ordered = []
    for key in TRACE_FIELDS:
        if key in values:
            ordered.append(f"{key}={values[key]}")
    if ordered:
        log.info("trace %s", " ".join(str(val) for val in ordered))


def _progression_mode(cfg: SessionConfig) -> ProgressionMode:
    if cfg.mode == "exam":
        return ProgressionMode.exam(int(cfg.required_answered_count or 0), has_compulsory=True)
    if cfg.topic_gating:
        return ProgressionMode.gated(cfg.mastery_threshold)
    return ProgressionMode.flat()


class AssessmentSession:
    """One learner attempt at a quiz or a theory exam.

    All state changes go through a single re-entrant lock, so the timer thread
    and the caller are serialised. Every rejected operation emits
    ``InvalidOperation`` and raises the matching ``EngineError``.
    """

    def __init__(
        self,
        items: List[Item],
        config: Optional[SessionConfig] = None,
        *,
        session_id: Optional[str] = None,
        on_event: Optional[Listener] = None,
    ):
        self.cfg = config or SessionConfig()
        items = list(items)
        validate_items(items)
        essays = [it.id for it in items if it.is_essay]
        if self.cfg.mode == "quiz" and essays:
            raise InvalidItems(f"quiz sessions cannot hold essay items: {essays}")
        if self.cfg.mode == "exam":
            if len(essays) != len(items):
                raise InvalidItems("exam sessions hold essay items only")
            if (self.cfg.required_answered_count or 0) > len(items):
                raise InvalidItems("required_answered_count exceeds the number of items")

        self.session_id = session_id or uuid.uuid4().hex
        self.items = items
        self._id_to_item: Dict[str, Item] = {it.id: it for it in items}
        self.answers = AnswerStore(items)
        self.progress = ProgressionController(items, self.answers, _progression_mode(self.cfg))
        self.timer = TimingPolicy(self.cfg.timing_mode, self.cfg.budget_seconds)
        self.phase: Phase = "IN_PROGRESS"

        self._lock = threading.RLock()
        self._listeners: List[Listener] = [on_event] if on_event else []
        self._ticker: Optional[IntervalTicker] = None
        self._retired: Optional[IntervalTicker] = None
        self._frozen: Optional[Dict[str, Answer]] = None
        self._finalized_by: Optional[str] = None
        self._result: Optional[Result] = None

        self.timer.start()
        log.info("session %s started mode=%s items=%d timing=%s/%ss gating=%s",
                 self.session_id, self.cfg.mode, len(items), self.timer.mode,
                 self.timer.budget, self.progress.mode.gating_enabled)

    # ---- plumbing ----
    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def _emit(self, event: SessionEvent) -> None:
        for fn in list(self._listeners):
            try:
                fn(event)
            except Exception:
                log.exception("event listener failed on %s", type(event).__name__)

    @contextmanager
    def _op(self, name: str) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except EngineError as e:
                log.info("session %s rejected %s: %s", self.session_id, name, e.reason)
                self._emit(InvalidOperation(reason=e.reason))
                raise
            _emit_trace(session=self.session_id, op=name, phase=self.phase,
                        index=self.progress.index, remaining=self.timer.remaining)

    def _ensure_open(self) -> None:
        if self.phase == "COMPLETE":
            raise InvalidState("session is complete")
        if self.phase == "FINALIZING":
            raise InvalidState("session is finalizing")
        if self.phase == "TOPIC_GATE_SHOWN":
            raise InvalidState("topic gate failed; retry the topic first")

    def _ensure_reachable(self, item_id: str) -> Item:
        item = self._id_to_item.get(item_id)
        if item is None:
            self.progress.position_of(item_id)  # raises UnknownItem
        if self.progress.mode.gating_enabled and item.topic != self.progress.current.topic:
            raise InvalidState(f"topic {item.topic!r} is not unlocked")
        return item

    # ---- read side ----
    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def current_item(self) -> Item:
        return self.progress.current

    @property
    def remaining_time(self) -> Optional[int]:
        return self.timer.remaining if self.timer.bounded else None

    @property
    def topic_gate_status(self) -> Dict[str, str]:
        return dict(self.progress.gate_status)

    @property
    def result(self) -> Optional[Result]:
        return self._result

    def can_submit(self) -> bool:
        with self._lock:
            return self.phase in _OPEN_PHASES and self.progress.can_submit()

    def requires_confirmation(self) -> bool:
        with self._lock:
            return self.progress.requires_confirmation()

    def answer_for(self, item_id: str) -> Optional[Answer]:
        with self._lock:
            ans = self.answers.get(item_id)
            return Answer(ans.item_id, ans.selected_index, ans.text, dict(ans.parts)) if ans else None

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            cur = self.progress.current
            return {
                "session_id": self.session_id,
                "mode": self.cfg.mode,
                "phase": self.phase,
                "current_index": self.progress.index,
                "current_item_id": cur.id,
                "remaining_time": self.remaining_time,
                "topic_gate_status": self.topic_gate_status,
                "answered_count": self.progress.answered_count(),
                "total_items": len(self.items),
                "can_submit": self.phase in _OPEN_PHASES and self.progress.can_submit(),
                "requires_confirmation": self.progress.requires_confirmation(),
            }

    # ---- answers ----
    def select_option(self, item_id: str, index: int) -> None:
        with self._op("select_option"):
            self._ensure_open()
            self._ensure_reachable(item_id)
            self.answers.select_option(item_id, index)

    def set_free_text(self, item_id: str, text: str) -> None:
        with self._op("set_free_text"):
            self._ensure_open()
            self._ensure_reachable(item_id)
            self.answers.set_text(item_id, text)

    def set_part_text(self, item_id: str, part_label: str, text: str) -> None:
        with self._op("set_part_text"):
            self._ensure_open()
            self._ensure_reachable(item_id)
            self.answers.set_part_text(item_id, part_label, text)

    # ---- navigation ----
    def _on_item_changed(self) -> None:
        cur = self.progress.current
        self._emit(ItemChanged(item_id=cur.id, index=self.progress.index))
        if self.timer.on_item_changed() and self._ticker is not None:
            self._ticker.restart()

    def _advance(self, finalized_by: str) -> Move:
        before = self.progress.index
        move = self.progress.advance()
        if move.gate is not None:
            log.info("session %s topic %r scored %d -> %s", self.session_id, move.gate.topic,
                     move.gate.score, "PASS" if move.gate.passed else "FAIL")
            _emit_trace(session=self.session_id, op="gate", topic=move.gate.topic, score=move.gate.score)
            self._emit(move.gate)
        if move.action == "finalize":
            self._finalize(finalized_by)
        elif move.action == "gate_failed":
            self.phase = "TOPIC_GATE_SHOWN"
            if self.timer.mode == "per_item":
                self.timer.cancel()
            if self.progress.index != before:
                self._emit(ItemChanged(item_id=self.progress.current.id, index=self.progress.index))
        elif self.progress.index != before:
            self._on_item_changed()
        return move

    def advance(self) -> Move:
        with self._op("advance"):
            self._ensure_open()
            return self._advance("last_item")

    def retreat(self) -> bool:
        with self._op("retreat"):
            self._ensure_open()
            moved = self.progress.retreat()
            if moved:
                self._on_item_changed()
            return moved

    def go_to(self, item_id: str) -> bool:
        with self._op("go_to"):
            self._ensure_open()
            moved = self.progress.go_to(item_id)
            if moved:
                self._on_item_changed()
            return moved

    def retry_topic(self) -> None:
        with self._op("retry_topic"):
            if self.phase != "TOPIC_GATE_SHOWN":
                raise InvalidState(f"no failed topic to retry (phase {self.phase})")
            self.phase = "IN_PROGRESS"
            self._on_item_changed()

    # ---- timing ----
    def tick(self) -> Optional[int]:
        """Advance the countdown by one second; timer expiry overrides the learner."""
        with self._lock:
            if self.phase not in _OPEN_PHASES or not self.timer.running:
                return self.remaining_time
            remaining = self.timer.tick()
            self._emit(TimerTick(remaining=remaining))
            signal = self.timer.on_expire()
            if signal is SessionSignal.FORCE_FINALIZE:
                log.info("session %s time budget exhausted; finalizing", self.session_id)
                self._finalize("timer")
            elif signal is SessionSignal.ADVANCE_ITEM:
                log.info("session %s item %s timed out", self.session_id, self.progress.current.id)
                self._advance("timer")
            return remaining

    def run_clock(self, interval: float = TICK_SECONDS) -> None:
        with self._lock:
            if not self.timer.bounded or self._ticker is not None or self.phase not in _OPEN_PHASES:
                return
            self._ticker = IntervalTicker(self.tick, interval, name=f"ticker-{self.session_id[:8]}").start()

    def _stop_clock(self) -> None:
        # called under the lock: signal only, a pending tick may be waiting on it
        self.timer.cancel()
        if self._ticker is not None:
            self._ticker.cancel()
            self._retired, self._ticker = self._ticker, None

    def join_clock(self, timeout: float = 2.0) -> bool:
        """Wait for a stopped ticker thread to exit. Call without holding ``lock``."""
        with self._lock:
            ticker, self._retired = self._retired, None
        return ticker is None or ticker.join(timeout)

    # ---- finalization ----
    def submit(self) -> Optional[Result]:
        with self._op("submit"):
            if self.phase == "FINALIZING":
                log.debug("session %s submit ignored; already finalizing", self.session_id)
                return None
            if self.phase == "COMPLETE":
                raise InvalidState("session is complete")
            if not self.progress.can_submit():
                raise PrematureSubmit(self.progress.answered_count(), self.progress.mode.required_answered)
            if self.progress.requires_confirmation():
                log.info("session %s submitted without the compulsory item", self.session_id)
            self._finalize("submit")
            return self._result

    def discard(self) -> Result:
        with self._op("discard"):
            if self.phase == "COMPLETE":
                raise InvalidState("session is complete")
            self._stop_clock()
            if not self.answers.frozen:
                self._frozen = self.answers.freeze()
            self._finalized_by = "discard"
            result = Result(
                session_id=self.session_id,
                mode=self.cfg.mode,
                status="discarded",
                score=0.0,
                max_score=self._max_score(),
                passed=False,
                finalized_by="discard",
                total_items=len(self.items),
            )
            self._complete(result)
            return result

    def _max_score(self) -> float:
        return float(self.cfg.session_max_points) if self.cfg.mode == "exam" else 100.0

    def _finalize(self, by: str) -> None:
        if self.phase not in _OPEN_PHASES:
            return
        self.phase = "FINALIZING"
        self._finalized_by = by
        self._stop_clock()
        self._frozen = self.answers.freeze()
        log.info("session %s finalizing by=%s answered=%d/%d", self.session_id, by,
                 self.progress.answered_count(), len(self.items))
        if self.cfg.mode == "quiz":
            self._complete(self._score_quiz(self._frozen))

    def _complete(self, result: Result) -> None:
        self._result = result
        self.phase = "COMPLETE"
        log.info("session %s complete status=%s score=%s/%s passed=%s", self.session_id,
                 result.status, result.score, result.max_score, result.passed)
        self._emit(SessionComplete(result=result))

    def _score_quiz(self, frozen: Mapping[str, Answer]) -> Result:
        rows = []
        for it in self.progress.order:
            ans = frozen.get(it.id)
            rows.append(QuizItemResult(
                item_id=it.id,
                topic=it.topic,
                is_correct=score_single_response_item(it, ans),
                selected_index=ans.selected_index if ans else -1,
                text=ans.text if ans else None,
            ))
        correct = sum(1 for r in rows if r.is_correct)
        pct = quiz_percentage(correct, len(rows))
        return Result(
            session_id=self.session_id,
            mode="quiz",
            status="graded",
            score=float(pct),
            max_score=100.0,
            passed=pct >= self.cfg.passing_threshold,
            finalized_by=self._finalized_by or "submit",
            quiz_items=tuple(rows),
            topics=topic_breakdown(self.progress.groups, frozen, self.progress.gate_status or None),
            correct_count=correct,
            total_items=len(rows),
        )

    # ---- exam grading (after the session is frozen) ----
    def _ensure_awaiting_grades(self) -> None:
        if self.cfg.mode != "exam":
            raise InvalidState("only exam sessions take external grades")
        if self.phase == "COMPLETE":
            raise InvalidState("session is complete")
        if self.phase != "FINALIZING":
            raise InvalidState("exam has not been submitted")

    def attempted_items(self) -> List[Item]:
        frozen = self._frozen or {}
        return [it for it in self.progress.order
                if it.id in frozen and frozen[it.id].is_answered(it)]

    def pending_grading(self) -> List[Dict[str, object]]:
        """``{item, part_answers}`` for each attempted essay, for the provider."""
        with self._lock:
            self._ensure_awaiting_grades()
            return [{"item": it, "part_answers": dict(self._frozen[it.id].parts)}
                    for it in self.attempted_items()]

    def grade_with(self, provider: GradingProvider) -> Result:
        with self._op("grade_with"):
            self._ensure_awaiting_grades()
            grades: Dict[str, ItemGrade] = {}
            for it in self.attempted_items():
                try:
                    grades[it.id] = provider.grade(it, dict(self._frozen[it.id].parts))
                except EngineError:
                    raise
                except Exception as e:
                    raise GradingError(f"grading failed for {it.id}: {e}") from e
            return self._apply_grades(grades)

    def apply_grades(self, grades: Mapping[str, object]) -> Result:
        """Aggregate provider grades (``ItemGrade`` or plain dicts) into the final result."""
        with self._op("apply_grades"):
            self._ensure_awaiting_grades()
            return self._apply_grades(grades)

    def _apply_grades(self, grades: Mapping[str, object]) -> Result:
        grades = {str(k): v for k, v in grades.items()}
        attempted = {it.id for it in self.attempted_items()}
        for gid in grades:
            self.progress.position_of(gid)
            if gid not in attempted:
                log.warning("grade for unattempted item %s ignored", gid)

        rows: List[ExamItemResult] = []
        warnings: List[ClampedScore] = []
        for it in self.progress.order:
            if it.id not in attempted:
                rows.append(ExamItemResult(
                    item_id=it.id, topic=it.topic, attempted=False, total_score=0.0,
                    part_scores=tuple(PartScore(p.label, 0.0, p.points) for p in it.parts),
                ))
                continue
            raw = grades.get(it.id)
            if raw is None:
                log.warning("no grade supplied for attempted item %s; scoring 0", it.id)
                grade = ItemGrade(item_id=it.id)
            elif isinstance(raw, ItemGrade):
                grade = raw
            else:
                grade = grade_from_dict(it.id, raw)
            total, parts, clamps = aggregate_essay_item(it, grade.scores(), grade.part_feedback())
            warnings.extend(clamps)
            rows.append(ExamItemResult(item_id=it.id, topic=it.topic, attempted=True,
                                       total_score=total, part_scores=parts, feedback=grade.feedback))

        final, passed = aggregate_session(
            (r.total_score for r in rows if r.attempted),
            float(self.cfg.session_max_points),
            self.cfg.passing_threshold,
        )
        result = Result(
            session_id=self.session_id,
            mode="exam",
            status="graded",
            score=final,
            max_score=float(self.cfg.session_max_points),
            passed=passed,
            finalized_by=self._finalized_by or "submit",
            exam_items=tuple(rows),
            topics=self._exam_topics(rows),
            warnings=tuple(warnings),
            total_items=len(rows),
        )
        self._complete(result)
        return result

    def _exam_topics(self, rows: List[ExamItemResult]) -> tuple[TopicPerformance, ...]:
        earned: Dict[str, float] = {}
        available: Dict[str, int] = {}
        for row in rows:
            if not row.attempted:
                continue
            earned[row.topic] = earned.get(row.topic, 0.0) + row.total_score
            available[row.topic] = available.get(row.topic, 0) + self._id_to_item[row.item_id].total_points
        out = []
        for topic in self.progress.groups:
            if topic not in available:
                continue
            pct = _round_half_up(100.0 * earned[topic] / available[topic]) if available[topic] else 0
            out.append(TopicPerformance(topic=topic, score=pct, status=topic_status(pct)))
        return tuple(out)
