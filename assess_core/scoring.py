from __future__ import annotations
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import logging
import math

from .types import Answer, ClampedScore, Item, PartScore, TopicPerformance, CHOICE_KINDS
from .config import TOPIC_STRENGTH_MIN, TOPIC_WEAKNESS_BELOW

log = logging.getLogger(__name__)


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def normalize_gap_text(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def score_single_response_item(item: Item, answer: Optional[Answer]) -> bool:
    """
    Choice kinds: selected index equals the key.
    FILL_IN_GAP: exact match after trimming and lower-casing. No partial
    credit and no fuzzy matching; "Pariss" is wrong.
    """
    if answer is None:
        return False
    if item.kind in CHOICE_KINDS:
        return item.correct_index is not None and answer.selected_index == item.correct_index
    if item.kind == "FILL_IN_GAP":
        got = normalize_gap_text(answer.text)
        return bool(got) and got == normalize_gap_text(item.correct_text)
    return False


def score_topic(items: Sequence[Item], answers: Mapping[str, Answer]) -> int:
    """Percentage (0..100, half-up) of the topic's items answered correctly."""
    if not items:
        raise ValueError("cannot score an empty topic")
    correct = sum(1 for it in items if score_single_response_item(it, answers.get(it.id)))
    return _round_half_up(100.0 * correct / len(items))


def quiz_percentage(correct: int, total: int) -> int:
    return _round_half_up(100.0 * correct / total) if total > 0 else 0


def topic_status(score: float) -> str:
    if score >= TOPIC_STRENGTH_MIN:
        return "Strength"
    if score < TOPIC_WEAKNESS_BELOW:
        return "Weakness"
    return "Average"


def topic_breakdown(
    groups: Mapping[str, Sequence[Item]],
    answers: Mapping[str, Answer],
    gates: Optional[Mapping[str, str]] = None,
) -> Tuple[TopicPerformance, ...]:
    out: List[TopicPerformance] = []
    for topic, items in groups.items():
        sc = score_topic(items, answers)
        out.append(TopicPerformance(topic=topic, score=sc, status=topic_status(sc),
                                    gate=(gates or {}).get(topic)))
    return tuple(out)


def _coerce_score(raw: object) -> Optional[float]:
    try:
        val = float(raw)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(val) else val


def aggregate_essay_item(
    item: Item,
    part_scores: Mapping[str, object],
    feedback: Optional[Mapping[str, str]] = None,
) -> Tuple[float, Tuple[PartScore, ...], List[ClampedScore]]:
    """
    Sum externally graded part scores for one essay item.

    Each score is clamped into [0, part.points]; out-of-range or non-numeric
    values are logged and reported as ``ClampedScore`` instead of raising.
    Parts the provider left out score 0.
    """
    warnings: List[ClampedScore] = []
    parts: List[PartScore] = []
    for part in item.parts:
        raw = part_scores.get(part.label, 0)
        val = _coerce_score(raw)
        clamped = min(max(val if val is not None else 0.0, 0.0), float(part.points))
        if val is None or clamped != val:
            log.warning("clamped score for %s/%s: %r -> %s", item.id, part.label, raw, clamped)
            warnings.append(ClampedScore(item_id=item.id, part_label=part.label, raw=raw, clamped=clamped))
        parts.append(PartScore(label=part.label, score=clamped, max_points=part.points,
                               feedback=(feedback or {}).get(part.label, "")))
    unknown = set(part_scores) - {p.label for p in item.parts}
    if unknown:
        log.warning("grade for %s names unknown parts %s; ignored", item.id, sorted(unknown))
    return sum(p.score for p in parts), tuple(parts), warnings


def aggregate_session(item_totals: Iterable[float], max_points: float, passing_threshold: float) -> Tuple[float, bool]:
    """Exam total capped at ``max_points``; unattempted items pass in 0."""
    final = min(float(sum(item_totals)), float(max_points))
    return final, final >= float(passing_threshold)
