from __future__ import annotations

import pytest
from pydantic import ValidationError

from assess_core.config import SessionConfig
from assess_core.engine import AssessmentSession
from assess_core.errors import GradingError, InvalidAnswer, InvalidItems, InvalidState, PrematureSubmit, UnknownItem
from assess_core.grading import ItemGrade, PartGrade, StaticGradingProvider
from assess_core.types import InvalidOperation, SessionComplete
from tests.conftest import build_exam_items, build_quiz_items


def _exam(items, events, strategy="3_OF_5", timed=False):
    return AssessmentSession(items, SessionConfig.exam_strategy(strategy, timed=timed), on_event=events.append)


def _write(sess, *item_ids):
    for iid in item_ids:
        sess.set_part_text(iid, "a", f"answer for {iid}")


def test_premature_submit_rejected(exam_items, events):
    sess = _exam(exam_items, events)
    _write(sess, "q1", "q2")
    assert not sess.can_submit()
    with pytest.raises(PrematureSubmit) as exc:
        sess.submit()
    assert (exc.value.answered, exc.value.required) == (2, 3)
    assert isinstance(events[-1], InvalidOperation)
    assert sess.phase == "IN_PROGRESS"


def test_optional_only_needs_confirmation(exam_items, events):
    sess = _exam(exam_items, events)
    _write(sess, "q2", "q3", "q4")
    assert sess.can_submit()
    assert sess.requires_confirmation()
    assert sess.submit() is None
    assert sess.phase == "FINALIZING"
    assert [row["item"].id for row in sess.pending_grading()] == ["q2", "q3", "q4"]


def test_compulsory_answered_needs_no_confirmation(exam_items, events):
    sess = _exam(exam_items, events)
    _write(sess, "q1")
    assert not sess.requires_confirmation()


def test_unflagged_set_treats_first_item_as_compulsory(events):
    sess = _exam(build_exam_items(compulsory=False), events)
    _write(sess, "q2", "q3", "q4")
    assert sess.requires_confirmation()
    _write(sess, "q1")
    assert not sess.requires_confirmation()


def test_grades_clamped_and_missing_scored_zero(exam_items, events):
    sess = _exam(exam_items, events)
    _write(sess, "q2", "q3", "q4")
    sess.submit()
    res = sess.apply_grades({"q2": {"a": 999, "b": 5}, "q3": {"a": 5, "b": 5}})
    assert sess.phase == "COMPLETE"
    by_id = {r.item_id: r for r in res.exam_items}
    assert by_id["q2"].total_score == 10
    assert by_id["q4"].attempted and by_id["q4"].total_score == 0
    assert not by_id["q1"].attempted and by_id["q1"].total_score == 0
    assert res.score == 20 and res.max_score == 70 and not res.passed
    assert [(w.item_id, w.part_label, w.raw, w.clamped) for w in res.warnings] == [("q2", "a", 999, 5.0)]
    assert len(events.of(SessionComplete)) == 1


def test_full_marks_pass(exam_items, events):
    sess = _exam(exam_items, events)
    _write(sess, "q1", "q2", "q3")
    sess.submit()
    provider = StaticGradingProvider({
        "q1": ItemGrade("q1", (PartGrade("a", 10, "ok"), PartGrade("b", 10), PartGrade("c", 10)), "strong"),
        "q2": {"a": 5, "b": 5},
        "q3": {"parts": [{"label": "a", "score": 5}, {"label": "b", "score": 5}], "feedback": "fine"},
    })
    res = sess.grade_with(provider)
    assert res.score == 50 and res.passed
    q1 = res.exam_items[0]
    assert q1.feedback == "strong" and q1.part_scores[0].feedback == "ok"
    assert res.exam_items[2].feedback == "fine"
    assert [(t.topic, t.score) for t in res.topics] == [("Theory", 100), ("Practice", 100)]


def test_total_capped_at_session_max(events):
    items = build_exam_items(7)
    sess = _exam(items, events, strategy="5_OF_7")
    _write(sess, *[it.id for it in items])
    sess.submit()
    full = {it.id: {p.label: p.points for p in it.parts} for it in items}
    res = sess.apply_grades(full)
    assert sum(r.total_score for r in res.exam_items) == 90
    assert res.score == 70 and res.passed


def test_free_navigation_and_last_item_stays(exam_items, events):
    sess = _exam(exam_items, events)
    assert sess.go_to("q5") is True
    move = sess.advance()
    assert move.action == "stayed"
    assert sess.current_item.id == "q5" and sess.phase == "IN_PROGRESS"
    sess.go_to("q2")
    assert sess.retreat() is True and sess.current_item.id == "q1"


def test_grading_failure_keeps_submission(exam_items, events):
    class Broken:
        def grade(self, item, part_answers):
            raise TimeoutError("provider down")

    sess = _exam(exam_items, events)
    _write(sess, "q1", "q2", "q3")
    sess.submit()
    with pytest.raises(GradingError):
        sess.grade_with(Broken())
    assert sess.phase == "FINALIZING" and sess.result is None
    res = sess.apply_grades({})
    assert res.score == 0 and sess.phase == "COMPLETE"


def test_grading_guards(exam_items, events):
    sess = _exam(exam_items, events)
    with pytest.raises(InvalidState):
        sess.apply_grades({})
    _write(sess, "q1", "q2", "q3")
    sess.submit()
    with pytest.raises(InvalidState):
        sess.set_part_text("q1", "b", "late edit")
    with pytest.raises(UnknownItem):
        sess.apply_grades({"q99": {"a": 1}})
    sess.apply_grades({})
    with pytest.raises(InvalidState):
        sess.apply_grades({})


def test_timer_finalizes_short_exam(exam_items, events):
    cfg = SessionConfig(mode="exam", timing_mode="total_session", budget_seconds=2, required_answered_count=3)
    sess = AssessmentSession(exam_items, cfg, on_event=events.append)
    _write(sess, "q2")
    sess.tick()
    sess.tick()
    assert sess.phase == "FINALIZING"
    res = sess.apply_grades({"q2": {"a": 5}})
    assert res.finalized_by == "timer" and res.score == 5
    assert res.max_score == 70 and not res.passed


def test_exam_config_rules():
    with pytest.raises(ValidationError):
        SessionConfig(mode="exam")
    with pytest.raises(ValidationError):
        SessionConfig(mode="exam", required_answered_count=3, topic_gating=True)
    with pytest.raises(ValueError):
        SessionConfig.exam_strategy("4_OF_6")
    cfg = SessionConfig.exam_strategy("5_OF_7")
    assert (cfg.required_answered_count, cfg.budget_seconds, cfg.passing_threshold) == (5, 5400, 45)


def test_exam_items_must_be_essays(events):
    with pytest.raises(InvalidItems):
        _exam(build_quiz_items(), events)
    with pytest.raises(InvalidItems):
        _exam(build_exam_items(2), events)


@pytest.mark.parametrize("bad", [{"parts": ["oops"]}, {"parts": "a=5"}, "full marks", 10])
def test_malformed_grades_refused(exam_items, events, bad):
    sess = _exam(exam_items, events)
    _write(sess, "q1", "q2", "q3")
    sess.submit()
    with pytest.raises(InvalidAnswer):
        sess.apply_grades({"q1": bad})
    assert isinstance(events[-1], InvalidOperation)
    assert sess.phase == "FINALIZING" and sess.result is None
    with pytest.raises(InvalidAnswer):
        sess.grade_with(StaticGradingProvider({"q2": bad}))
    res = sess.apply_grades({"q1": {"a": 10}})
    assert res.score == 10
