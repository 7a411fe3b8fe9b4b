# assess_core/items.py
"""Normalise provider question payloads into immutable ``Item`` records.

The content provider emits camelCase JSON (``correctAnswerIndex``,
``mainPrompt``, ``expectedKeywords`` ...); snake_case keys are accepted too so
item files can be written by hand.
"""
from __future__ import annotations
import json, logging
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from .types import Item, Part, CHOICE_KINDS
from .errors import InvalidItems

log = logging.getLogger(__name__)

_KIND_ALIASES = {
    "MULTIPLE_CHOICE": "SINGLE_CHOICE",
    "SINGLE_CHOICE": "SINGLE_CHOICE",
    "MCQ": "SINGLE_CHOICE",
    "TRUE_FALSE": "TRUE_FALSE",
    "FILL_IN_THE_GAP": "FILL_IN_GAP",
    "FILL_IN_GAP": "FILL_IN_GAP",
    "MULTI_PART_ESSAY": "MULTI_PART_ESSAY",
    "THEORY": "MULTI_PART_ESSAY",
}

SAMPLE_FILES = {"quiz": "data/sample_quiz.json", "exam": "data/sample_exam.json"}


def _pick(raw: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in raw and raw[k] is not None:
            return raw[k]
    return default


def _kind_of(raw: Mapping[str, Any]) -> str:
    declared = _pick(raw, "kind", "type")
    if declared is None:
        # theory payloads carry parts but no type tag
        return "MULTI_PART_ESSAY" if raw.get("parts") else "SINGLE_CHOICE"
    kind = _KIND_ALIASES.get(str(declared).upper().strip())
    if kind is None:
        raise InvalidItems(f"unsupported item type: {declared!r}")
    return kind


def _part_from_dict(raw: Mapping[str, Any]) -> Part:
    hints = _pick(raw, "hints", "expectedKeywords", "expected_keywords", default=()) or ()
    try:
        points = int(_pick(raw, "points", "pointValue", "point_value", default=0))
    except (TypeError, ValueError):
        raise InvalidItems(f"part {raw.get('label')!r} has a non-numeric point value")
    return Part(
        label=str(raw.get("label", "")).strip(),
        text=str(_pick(raw, "text", "prompt", default="")),
        points=points,
        hints=tuple(str(h) for h in hints),
    )


def item_from_dict(raw: Mapping[str, Any]) -> Item:
    if "id" not in raw:
        raise InvalidItems("item without id")
    kind = _kind_of(raw)
    iid = str(raw["id"])
    topic = str(_pick(raw, "topic", "topicLabel", "topic_label", default="General")).strip() or "General"
    text = str(_pick(raw, "text", "mainPrompt", "main_prompt", "question", default=""))

    if kind == "MULTI_PART_ESSAY":
        parts = tuple(_part_from_dict(p) for p in raw.get("parts") or ())
        item = Item(
            id=iid, topic=topic, kind=kind, text=text, parts=parts,
            is_compulsory=bool(_pick(raw, "isCompulsory", "is_compulsory", default=False)),
        )
        declared_total = _pick(raw, "totalPoints", "total_points")
        if declared_total is not None and int(declared_total) != item.total_points:
            log.warning("item %s declares totalPoints=%s but parts sum to %s; using parts",
                        iid, declared_total, item.total_points)
        return item

    options: Tuple[str, ...] = tuple(str(o) for o in (_pick(raw, "options", "choices", default=()) or ()))
    if kind == "TRUE_FALSE" and not options:
        options = ("True", "False")
    correct_index = _pick(raw, "correctAnswerIndex", "correct_index", "correctOptionIndex", "correct")
    correct_text = _pick(raw, "correctAnswerText", "correct_text", "answer")
    return Item(
        id=iid, topic=topic, kind=kind, text=text,
        options=options if kind in CHOICE_KINDS else (),
        correct_index=int(correct_index) if (kind in CHOICE_KINDS and correct_index is not None) else None,
        correct_text=str(correct_text) if kind == "FILL_IN_GAP" and correct_text is not None else None,
        explanation=str(_pick(raw, "explanation", default="")),
    )


def validate_items(items: Sequence[Item]) -> None:
    """Raise ``InvalidItems`` unless every item has exactly one usable answer key."""
    if not items:
        raise InvalidItems("a session needs at least one item")
    seen: set[str] = set()
    for it in items:
        if it.id in seen:
            raise InvalidItems(f"duplicate item id: {it.id}")
        seen.add(it.id)
        if it.kind in CHOICE_KINDS:
            if len(it.options) < 2:
                raise InvalidItems(f"{it.id}: choice item needs at least two options")
            if it.correct_index is None or not (0 <= it.correct_index < len(it.options)):
                raise InvalidItems(f"{it.id}: correct option index out of range")
            if it.correct_text is not None or it.parts:
                raise InvalidItems(f"{it.id}: choice item carries a second answer key")
        elif it.kind == "FILL_IN_GAP":
            if not (it.correct_text or "").strip():
                raise InvalidItems(f"{it.id}: fill-in-gap item needs correct text")
            if it.correct_index is not None or it.parts:
                raise InvalidItems(f"{it.id}: fill-in-gap item carries a second answer key")
        else:
            if not it.parts:
                raise InvalidItems(f"{it.id}: essay item needs parts")
            labels = [p.label for p in it.parts]
            if len(set(labels)) != len(labels) or not all(labels):
                raise InvalidItems(f"{it.id}: part labels must be unique and non-empty")
            if any(p.points < 0 for p in it.parts):
                raise InvalidItems(f"{it.id}: negative part points")


def group_by_topic(items: Iterable[Item]) -> "OrderedDict[str, List[Item]]":
    """Group items by topic label, preserving first-seen topic order."""
    groups: "OrderedDict[str, List[Item]]" = OrderedDict()
    for it in items:
        groups.setdefault(it.topic, []).append(it)
    return groups


def parse_items(raw: Any) -> List[Item]:
    if isinstance(raw, Mapping):
        raw = raw.get("items") or raw.get("questions") or []
    items = [item_from_dict(r) for r in raw]
    validate_items(items)
    return items


def load_items(path: str | Path) -> List[Item]:
    data = Path(path).read_text(encoding="utf-8")
    return parse_items(json.loads(data))


def load_sample(mode: str = "quiz") -> List[Item]:
    data = (Path(__file__).parent / SAMPLE_FILES[mode]).read_text(encoding="utf-8")
    return parse_items(json.loads(data))


def items_to_dicts(items: Iterable[Item]) -> List[Dict[str, Any]]:
    """Learner-facing view of items: answer keys and grading hints stripped."""
    out: List[Dict[str, Any]] = []
    for it in items:
        row: Dict[str, Any] = {"id": it.id, "topic": it.topic, "kind": it.kind, "text": it.text}
        if it.is_essay:
            row["parts"] = [{"label": p.label, "text": p.text, "points": p.points} for p in it.parts]
            row["total_points"] = it.total_points
            row["is_compulsory"] = it.is_compulsory
        elif it.options:
            row["options"] = list(it.options)
        out.append(row)
    return out
