from __future__ import annotations

import pytest

from assess_core.answers import AnswerStore
from assess_core.errors import InvalidAnswer, InvalidState, UnknownItem
from tests.conftest import build_exam_items, build_quiz_items


def test_choice_and_gap_answers_recorded():
    items = build_quiz_items(topics=["Alpha"], per_topic=3)
    store = AnswerStore(items)
    store.select_option("alpha_0", 2)
    store.set_text("alpha_2", "  Answer2 ")
    assert store.get("alpha_0").selected_index == 2
    assert store.get("alpha_2").text == "  Answer2 "
    assert store.get("alpha_1") is None
    assert store.answered_count() == 2


def test_overwrite_keeps_last_value():
    store = AnswerStore(build_quiz_items(topics=["Alpha"]))
    store.select_option("alpha_0", 1)
    store.select_option("alpha_0", 3)
    assert store.get("alpha_0").selected_index == 3


@pytest.mark.parametrize("index", [-1, 4, 99])
def test_option_out_of_range_rejected(index):
    store = AnswerStore(build_quiz_items(topics=["Alpha"]))
    with pytest.raises(InvalidAnswer):
        store.select_option("alpha_0", index)
    assert store.get("alpha_0") is None


def test_answer_kind_mismatch_rejected():
    store = AnswerStore(build_quiz_items(topics=["Alpha"]) + build_exam_items(2))
    with pytest.raises(InvalidAnswer):
        store.set_text("alpha_0", "text on a choice item")
    with pytest.raises(InvalidAnswer):
        store.select_option("alpha_2", 0)
    with pytest.raises(InvalidAnswer):
        store.set_part_text("alpha_0", "a", "x")
    with pytest.raises(InvalidAnswer):
        store.set_part_text("q1", "z", "no such part")


def test_unknown_item_rejected():
    store = AnswerStore(build_quiz_items())
    with pytest.raises(UnknownItem):
        store.select_option("missing", 0)
    with pytest.raises(UnknownItem):
        store.get("missing")


def test_essay_answered_only_with_content():
    store = AnswerStore(build_exam_items(2))
    store.set_part_text("q1", "a", "   ")
    assert not store.is_answered("q1")
    store.set_part_text("q1", "b", "photosynthesis")
    assert store.is_answered("q1")


def test_clear_removes_only_named_items():
    store = AnswerStore(build_quiz_items(topics=["Alpha", "Beta"]))
    store.select_option("alpha_0", 0)
    store.select_option("beta_0", 0)
    assert store.clear(["alpha_0", "alpha_1"]) == ["alpha_0"]
    assert store.get("alpha_0") is None
    assert store.get("beta_0").selected_index == 0


def test_freeze_detaches_and_blocks_edits():
    store = AnswerStore(build_quiz_items(topics=["Alpha"]))
    store.select_option("alpha_0", 1)
    frozen = store.freeze()
    assert store.frozen
    with pytest.raises(InvalidState):
        store.select_option("alpha_0", 0)
    with pytest.raises(InvalidState):
        store.clear(["alpha_0"])
    frozen["alpha_0"].selected_index = 3
    assert store.get("alpha_0").selected_index == 1


@pytest.mark.parametrize("index", ["two", None, "1.5"])
def test_non_integer_option_rejected(index):
    store = AnswerStore(build_quiz_items(topics=["Alpha"]))
    with pytest.raises(InvalidAnswer):
        store.select_option("alpha_0", index)
    assert store.get("alpha_0") is None
