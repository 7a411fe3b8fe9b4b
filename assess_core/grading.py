# assess_core/grading.py
"""Adapters for the external grading provider.

The engine never judges essay text. After an exam is frozen it hands each
attempted item (with the learner's part answers) to a ``GradingProvider`` and
only aggregates the per-part scores it gets back.
"""
from __future__ import annotations
import os, json, pathlib, time, logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from openai import AzureOpenAI

from .config import get_backend
from .errors import GradingError, InvalidAnswer
from .types import Item

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartGrade:
    label: str
    score: object
    feedback: str = ""
    missed_keywords: Tuple[str, ...] = ()
    reference: str = ""


@dataclass(frozen=True)
class ItemGrade:
    item_id: str
    parts: Tuple[PartGrade, ...] = ()
    feedback: str = ""

    def scores(self) -> Dict[str, object]:
        return {p.label: p.score for p in self.parts}

    def part_feedback(self) -> Dict[str, str]:
        return {p.label: p.feedback for p in self.parts}


class GradingProvider(Protocol):
    def grade(self, item: Item, part_answers: Mapping[str, str]) -> ItemGrade: ...


def _part_rows(item_id: str, parts: Any) -> list:
    if parts is None:
        return []
    if not isinstance(parts, (list, tuple)):
        raise InvalidAnswer(f"grade for {item_id}: parts must be a list")
    for p in parts:
        if not isinstance(p, Mapping):
            raise InvalidAnswer(f"grade for {item_id}: each part must be an object, got {p!r}")
    return list(parts)


def _keywords(p: Mapping[str, Any]) -> Tuple[str, ...]:
    kw = p.get("missedKeywords") or p.get("missed_keywords") or ()
    return tuple(str(k) for k in kw) if isinstance(kw, (list, tuple)) else ()


def grade_from_dict(item_id: str, raw: Mapping[str, Any]) -> ItemGrade:
    """Accept ``{"parts": [{"label", "score", ...}], "feedback"}`` or a bare ``{label: score}``.

    Anything else is refused with ``InvalidAnswer``; part scores themselves
    are left for the clamp in ``scoring.aggregate_essay_item``.
    """
    if not isinstance(raw, Mapping):
        raise InvalidAnswer(f"grade for {item_id} must be an object, got {type(raw).__name__}")
    if "parts" not in raw:
        parts = tuple(PartGrade(label=str(k), score=v) for k, v in raw.items() if k != "feedback")
        return ItemGrade(item_id=item_id, parts=parts, feedback=str(raw.get("feedback", "")))
    parts = tuple(
        PartGrade(
            label=str(p.get("label", "")),
            score=p.get("score", 0),
            feedback=str(p.get("feedback", "")),
            missed_keywords=_keywords(p),
            reference=str(p.get("correctAnswerReference") or p.get("reference") or ""),
        )
        for p in _part_rows(item_id, raw.get("parts"))
    )
    return ItemGrade(item_id=item_id, parts=parts, feedback=str(raw.get("feedback", "")))


class StaticGradingProvider:
    """Grades supplied up front by the caller (HTTP client, operator, tests)."""

    def __init__(self, grades: Mapping[str, Any]):
        self._grades: Dict[str, Any] = {str(k): v for k, v in grades.items()}

    def grade(self, item: Item, part_answers: Mapping[str, str]) -> ItemGrade:
        raw = self._grades.get(item.id)
        if raw is None:
            return ItemGrade(item_id=item.id)
        return raw if isinstance(raw, ItemGrade) else grade_from_dict(item.id, raw)


# ---- Azure OpenAI ----
@dataclass(frozen=True)
class AzureSettings:
    endpoint: str
    api_key: str
    deployment: str
    api_version: str


def _azure_from_env() -> dict[str, str]:
    return {
        "endpoint":   os.getenv("AZURE_OPENAI_ENDPOINT", ""),
        "api_key":    os.getenv("AZURE_OPENAI_API_KEY", ""),
        "api_version":os.getenv("AZURE_OPENAI_API_VERSION", ""),
        "deployment": os.getenv("AZURE_OPENAI_DEPLOYMENT", ""),
    }


def _azure_from_json(path: str = ".azure_config.json") -> dict[str, str]:
    p = pathlib.Path(path)
    if not p.exists(): return {}
    try:
        j = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return {k: str(j.get(k, "")) for k in ("endpoint", "api_key", "api_version", "deployment")}


def azure_settings() -> AzureSettings:
    cfg = _azure_from_env()
    if not all(cfg.values()):
        for k, v in _azure_from_json().items():
            if not cfg.get(k): cfg[k] = v
    missing = [k for k, v in cfg.items() if not v]
    if missing:
        raise GradingError(f"Azure OpenAI not configured. Missing: {', '.join(missing)}")
    return AzureSettings(**cfg)


_SYSTEM_PROMPT = (
    "You are a strict examiner grading a theory exam answer against the source document. "
    "Each part has a maximum mark and a list of mandatory keywords. "
    "Return ONLY compact JSON: {\"parts\": [{\"label\", \"score\", \"feedback\", "
    "\"missedKeywords\", \"correctAnswerReference\"}], \"feedback\": str}. "
    "Scores are integers between 0 and the part maximum."
)


class AzureGradingProvider:
    def __init__(self, settings: Optional[AzureSettings] = None, client: Any = None):
        self.settings = settings or azure_settings()
        self._client = client or AzureOpenAI(
            azure_endpoint=self.settings.endpoint,
            api_key=self.settings.api_key,
            api_version=self.settings.api_version,
        )

    def _prompt(self, item: Item, part_answers: Mapping[str, str]) -> str:
        rows = [{
            "label": p.label,
            "question": p.text,
            "max": p.points,
            "keywords": list(p.hints),
            "answer": (part_answers.get(p.label) or "").strip(),
        } for p in item.parts]
        return json.dumps({"topic": item.topic, "prompt": item.text, "parts": rows}, ensure_ascii=False)

    def grade(self, item: Item, part_answers: Mapping[str, str]) -> ItemGrade:
        t0 = time.time()
        try:
            resp = self._client.chat.completions.create(
                model=self.settings.deployment,
                messages=[{"role": "system", "content": _SYSTEM_PROMPT},
                          {"role": "user", "content": self._prompt(item, part_answers)}],
                temperature=0.0, top_p=1.0, max_tokens=800,
                response_format={"type": "json_object"},
            )
            raw = json.loads(resp.choices[0].message.content or "{}")
        except Exception as e:
            raise GradingError(f"grading failed for {item.id}: {e}") from e
        log.info("graded item=%s backend=azure rt_ms=%d", item.id, int((time.time() - t0) * 1000))
        try:
            return grade_from_dict(item.id, raw)
        except InvalidAnswer as e:
            raise GradingError(f"malformed grade from backend: {e.reason}") from e


def provider_from_config(cfg: dict, grades: Optional[Mapping[str, Any]] = None) -> GradingProvider:
    """Azure when ``USE_LLM_GRADING`` + ``LLM_BACKEND=azure``; otherwise caller-supplied grades."""
    if get_backend(cfg) == "azure":
        return AzureGradingProvider()
    return StaticGradingProvider(grades or {})
