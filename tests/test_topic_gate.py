from __future__ import annotations

import pytest

from assess_core.config import SessionConfig
from assess_core.engine import AssessmentSession
from assess_core.errors import InvalidState
from assess_core.types import InvalidOperation, Item, TopicGateResult
from tests.conftest import answer_correctly, answer_wrongly, build_quiz_items


def _gated(items, events, **cfg):
    return AssessmentSession(items, SessionConfig.quiz(topic_gating=True, **cfg), on_event=events.append)


def _play_topic(sess, items, correct: int) -> None:
    for idx, it in enumerate(items):
        (answer_correctly if idx < correct else answer_wrongly)(sess, it)
        sess.advance()


def test_failed_topic_clears_and_resets(quiz_items, events):
    sess = _gated(quiz_items, events)
    alpha = quiz_items[:3]
    _play_topic(sess, alpha, correct=1)

    gate = events.of(TopicGateResult)[-1]
    assert (gate.topic, gate.score, gate.passed) == ("Alpha", 33, False)
    assert sess.phase == "TOPIC_GATE_SHOWN"
    assert sess.topic_gate_status == {"Alpha": "FAIL", "Beta": "PENDING"}
    assert sess.current_item.id == "alpha_0"
    assert all(sess.answer_for(it.id) is None for it in alpha)

    with pytest.raises(InvalidState):
        sess.select_option("alpha_0", 0)
    with pytest.raises(InvalidState):
        sess.advance()
    assert isinstance(events[-1], InvalidOperation)


def test_retry_then_pass_unlocks_next_topic(quiz_items, events):
    sess = _gated(quiz_items, events)
    alpha = quiz_items[:3]
    _play_topic(sess, alpha, correct=1)
    sess.retry_topic()
    assert sess.phase == "IN_PROGRESS"
    _play_topic(sess, alpha, correct=3)

    gate = events.of(TopicGateResult)[-1]
    assert (gate.topic, gate.score, gate.passed) == ("Alpha", 100, True)
    assert sess.phase == "IN_PROGRESS"
    assert sess.current_item.id == "beta_0"
    assert sess.topic_gate_status["Alpha"] == "PASS"


def test_mastered_topic_is_closed(quiz_items, events):
    sess = _gated(quiz_items, events)
    _play_topic(sess, quiz_items[:3], correct=3)
    with pytest.raises(InvalidState):
        sess.retreat()
    with pytest.raises(InvalidState):
        sess.go_to("alpha_1")
    with pytest.raises(InvalidState):
        sess.select_option("alpha_0", 1)
    assert sess.answer_for("alpha_0").selected_index == 0


def test_locked_topic_unreachable(quiz_items, events):
    sess = _gated(quiz_items, events)
    with pytest.raises(InvalidState):
        sess.go_to("beta_0")
    with pytest.raises(InvalidState):
        sess.select_option("beta_0", 0)
    # navigation inside the open topic is free
    assert sess.go_to("alpha_2") is True
    assert sess.retreat() is True


def test_last_topic_pass_finalizes_with_gates(quiz_items, events):
    sess = _gated(quiz_items, events)
    _play_topic(sess, quiz_items[:3], correct=3)
    _play_topic(sess, quiz_items[3:], correct=3)
    res = sess.result
    assert sess.phase == "COMPLETE"
    assert res.score == 100 and res.passed
    assert [(t.topic, t.gate) for t in res.topics] == [("Alpha", "PASS"), ("Beta", "PASS")]


def test_retry_outside_gate_rejected(quiz_items, events):
    sess = _gated(quiz_items, events)
    with pytest.raises(InvalidState):
        sess.retry_topic()


def test_submit_from_gate_scores_as_is(quiz_items, events):
    sess = _gated(quiz_items, events)
    _play_topic(sess, quiz_items[:3], correct=0)
    res = sess.submit()
    assert res.correct_count == 0
    assert sess.phase == "COMPLETE"


def test_interleaved_topics_walk_as_blocks(events):
    items: list[Item] = build_quiz_items(topics=["A", "B"], per_topic=2, include_gap=False)
    mixed = [items[0], items[2], items[1], items[3]]
    sess = _gated(mixed, events)
    assert [it.id for it in sess.progress.order] == ["a_0", "a_1", "b_0", "b_1"]


def test_custom_threshold(events):
    items = build_quiz_items(topics=["A"], per_topic=2, include_gap=False)
    sess = _gated(items, events, mastery_threshold=50)
    _play_topic(sess, items, correct=1)
    assert sess.phase == "COMPLETE"
    assert sess.topic_gate_status == {"A": "PASS"}
