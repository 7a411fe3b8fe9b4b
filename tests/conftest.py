from __future__ import annotations

import pytest

from assess_core.types import Item, Part


def build_quiz_items(
    *,
    topics: list[str] | None = None,
    per_topic: int = 3,
    include_gap: bool = True,
) -> list[Item]:
    """Deterministic quiz items; every choice key is option 0, every gap key is ``answer<n>``."""

    items: list[Item] = []
    for topic in topics or ["Alpha", "Beta"]:
        for idx in range(per_topic):
            iid = f"{topic.lower()}_{idx}"
            if include_gap and idx == per_topic - 1:
                items.append(
                    Item(
                        id=iid,
                        topic=topic,
                        kind="FILL_IN_GAP",
                        text=f"{topic} gap #{idx}",
                        correct_text=f"answer{idx}",
                    )
                )
            elif idx % 2:
                items.append(
                    Item(
                        id=iid,
                        topic=topic,
                        kind="TRUE_FALSE",
                        text=f"{topic} statement #{idx}",
                        options=("True", "False"),
                        correct_index=0,
                    )
                )
            else:
                items.append(
                    Item(
                        id=iid,
                        topic=topic,
                        kind="SINGLE_CHOICE",
                        text=f"{topic} choice #{idx}",
                        options=("A", "B", "C", "D"),
                        correct_index=0,
                    )
                )
    return items


def build_exam_items(count: int = 5, *, compulsory: bool = True) -> list[Item]:
    """Essay items worth 30 + 10 * (count - 1); item ``q1`` carries three parts."""

    items: list[Item] = [
        Item(
            id="q1",
            topic="Theory",
            kind="MULTI_PART_ESSAY",
            text="Compulsory question",
            parts=(Part("a", "Define", 10), Part("b", "Explain", 10), Part("c", "Apply", 10)),
            is_compulsory=compulsory,
        )
    ]
    for idx in range(2, count + 1):
        items.append(
            Item(
                id=f"q{idx}",
                topic="Theory" if idx % 2 else "Practice",
                kind="MULTI_PART_ESSAY",
                text=f"Optional question {idx}",
                parts=(Part("a", "Part a", 5), Part("b", "Part b", 5)),
            )
        )
    return items


def answer_correctly(sess, item: Item) -> None:
    if item.kind == "FILL_IN_GAP":
        sess.set_free_text(item.id, item.correct_text)
    else:
        sess.select_option(item.id, item.correct_index)


def answer_wrongly(sess, item: Item) -> None:
    if item.kind == "FILL_IN_GAP":
        sess.set_free_text(item.id, "nope")
    else:
        sess.select_option(item.id, (item.correct_index + 1) % len(item.options))


class EventLog(list):
    def of(self, kind: type) -> list:
        return [e for e in self if isinstance(e, kind)]


@pytest.fixture
def events() -> EventLog:
    return EventLog()


@pytest.fixture
def quiz_items() -> list[Item]:
    return build_quiz_items()


@pytest.fixture
def exam_items() -> list[Item]:
    return build_exam_items()
