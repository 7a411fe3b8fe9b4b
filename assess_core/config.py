from __future__ import annotations
import os, json, pathlib
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


QUIZ_PASS_PERCENT: int = 70
TOPIC_MASTERY_PERCENT: int = 70
TOPIC_STRENGTH_MIN: int = 70
TOPIC_WEAKNESS_BELOW: int = 50

EXAM_MAX_POINTS: int = 70
EXAM_PASS_POINTS: int = 45

# strategy -> items generated, items that must be answered, minutes allowed
EXAM_STRATEGIES: dict[str, dict[str, int]] = {
    "3_OF_5": {"items": 5, "required": 3, "minutes": 60},
    "5_OF_7": {"items": 7, "required": 5, "minutes": 90},
}

TICK_SECONDS: float = 1.0

DEBUG_TRACE: bool = False
TRACE_FIELDS: tuple[str, ...] = (
    "session",
    "op",
    "phase",
    "item_id",
    "index",
    "remaining",
    "topic",
    "score",
)
# // env overrides for staging/ops; defaults mirror the product rules.
QUIZ_PASS_PERCENT = _env_int("QUIZ_PASS_PERCENT", QUIZ_PASS_PERCENT)
TOPIC_MASTERY_PERCENT = _env_int("TOPIC_MASTERY_PERCENT", TOPIC_MASTERY_PERCENT)
EXAM_MAX_POINTS = _env_int("EXAM_MAX_POINTS", EXAM_MAX_POINTS)
EXAM_PASS_POINTS = _env_int("EXAM_PASS_POINTS", EXAM_PASS_POINTS)
TICK_SECONDS = _env_float("TICK_SECONDS", TICK_SECONDS)
DEBUG_TRACE = _env_bool("DEBUG_TRACE", False)

TimingModeName = Literal["unbounded", "per_item", "total_session"]


class SessionConfig(BaseModel):
    """Construction-time settings for one attempt."""

    mode: Literal["quiz", "exam"] = "quiz"
    timing_mode: TimingModeName = "unbounded"
    budget_seconds: int = Field(default=0, ge=0)
    topic_gating: bool = False
    mastery_threshold: int = Field(default=TOPIC_MASTERY_PERCENT, ge=0, le=100)
    required_answered_count: Optional[int] = Field(default=None, ge=1)
    passing_threshold: float = QUIZ_PASS_PERCENT
    session_max_points: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_mode_fields(self) -> "SessionConfig":
        if self.timing_mode != "unbounded" and self.budget_seconds <= 0:
            raise ValueError(f"timing_mode={self.timing_mode} needs budget_seconds > 0")
        if self.mode == "exam":
            if self.required_answered_count is None:
                raise ValueError("exam sessions need required_answered_count")
            if self.topic_gating:
                raise ValueError("topic gating applies to quiz sessions only")
            if self.session_max_points is None:
                self.session_max_points = float(EXAM_MAX_POINTS)
            if "passing_threshold" not in self.model_fields_set:
                self.passing_threshold = float(EXAM_PASS_POINTS)
        return self

    @classmethod
    def quiz(
        cls,
        timer: TimingModeName = "unbounded",
        budget_seconds: int = 0,
        *,
        topic_gating: bool = False,
        mastery_threshold: int = TOPIC_MASTERY_PERCENT,
    ) -> "SessionConfig":
        return cls(
            mode="quiz",
            timing_mode=timer,
            budget_seconds=budget_seconds,
            topic_gating=topic_gating,
            mastery_threshold=mastery_threshold,
            passing_threshold=QUIZ_PASS_PERCENT,
        )

    @classmethod
    def exam_strategy(cls, strategy: str = "3_OF_5", *, timed: bool = True) -> "SessionConfig":
        preset = EXAM_STRATEGIES.get(strategy)
        if preset is None:
            raise ValueError(f"unknown exam strategy: {strategy}")
        return cls(
            mode="exam",
            timing_mode="total_session" if timed else "unbounded",
            budget_seconds=preset["minutes"] * 60 if timed else 0,
            required_answered_count=preset["required"],
            passing_threshold=EXAM_PASS_POINTS,
            session_max_points=EXAM_MAX_POINTS,
        )


def _env_true(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1","true","yes","on")
def load_config() -> dict:
    cfg = {}
    p = pathlib.Path("config.json")
    if p.exists():
        try: cfg = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError): cfg = {}
    e = os.environ
    if e.get("USE_LLM_GRADING"): cfg["USE_LLM_GRADING"] = _env_true("USE_LLM_GRADING")
    if e.get("LLM_BACKEND"): cfg["LLM_BACKEND"] = e.get("LLM_BACKEND")
    for k in ("AZURE_OPENAI_ENDPOINT","AZURE_OPENAI_API_VERSION","AZURE_OPENAI_API_KEY","AZURE_OPENAI_DEPLOYMENT"):
        if e.get(k): cfg[k] = e.get(k)
    return cfg
def get_backend(cfg: dict) -> str|None:
    if not cfg.get("USE_LLM_GRADING"): return None
    b = (cfg.get("LLM_BACKEND") or "").lower().strip()
    return b if b == "azure" else None
