from __future__ import annotations
from collections import deque
from fastapi import FastAPI, HTTPException, Body, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError
import os, json, typing as t

# ---- Engine imports ----
from assess_core.engine import AssessmentSession
from assess_core.config import SessionConfig, load_config, get_backend
from assess_core.errors import (
    EngineError, GradingError, InvalidAnswer, InvalidItems, InvalidState, PrematureSubmit, UnknownItem,
)
from assess_core.grading import provider_from_config
from assess_core.items import items_to_dicts, load_sample, parse_items

SESS: dict[str, AssessmentSession] = {}
EVENT_LOG_MAX = 200


class EventLog:
    """Recent engine events numbered from 0; old rows drop off, numbers never repeat."""

    def __init__(self, maxlen: int = EVENT_LOG_MAX):
        self.rows: deque = deque(maxlen=maxlen)
        self.next_seq = 0

    def append(self, evt: t.Any) -> None:
        self.rows.append((self.next_seq, evt))
        self.next_seq += 1

    def since(self, seq: int) -> list[tuple[int, t.Any]]:
        return [(s, e) for s, e in self.rows if s >= seq]


EVENTS: dict[str, EventLog] = {}

app = FastAPI(title="Assessment Session API")

@app.get("/")
def root():
    return {"status": "ok", "service": "assessment-session-api"}

ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

# ---- Schemas ----
class StartReq(BaseModel):
    mode: str = "quiz"                 # "quiz" | "exam"
    items: list[dict[str, t.Any]] | None = None   # provider payload; sample set when omitted
    timing_mode: str = "unbounded"     # "unbounded" | "per_item" | "total_session"
    budget_seconds: int = 0
    topic_gating: bool = False
    strategy: str | None = None        # exam presets: "3_OF_5" | "5_OF_7"
    required_answered_count: int | None = None
    realtime: bool = True

class SelectReq(BaseModel):
    item_id: str
    index: int

class TextReq(BaseModel):
    item_id: str
    text: str

class PartReq(BaseModel):
    item_id: str
    part_label: str
    text: str

class GotoReq(BaseModel):
    item_id: str

class GradeReq(BaseModel):
    # item_id -> {"parts": [{"label", "score", "feedback"}], "feedback"} or {label: score}
    grades: dict[str, dict[str, t.Any]] | None = None

# ---- Helpers ----
def _serialize(obj: t.Any) -> t.Any:
    return json.loads(json.dumps(obj, default=lambda o: getattr(o, "__dict__", str(o))))


def _event_payload(seq: int, evt: t.Any) -> dict[str, t.Any]:
    return {"seq": seq, "type": type(evt).__name__, **_serialize(evt)}


def _session(sid: str) -> AssessmentSession:
    sess = SESS.get(sid)
    if not sess: raise HTTPException(404, "session not found")
    return sess


def _engine_http_error(e: EngineError) -> HTTPException:
    if isinstance(e, UnknownItem):
        return HTTPException(404, e.reason)
    if isinstance(e, InvalidState):
        return HTTPException(409, e.reason)
    if isinstance(e, (PrematureSubmit, InvalidAnswer, InvalidItems)):
        return HTTPException(422, e.reason)
    if isinstance(e, GradingError):
        return HTTPException(502, e.reason)
    return HTTPException(400, e.reason)


def _call(sid: str, fn: t.Callable[[AssessmentSession], t.Any]) -> dict[str, t.Any]:
    sess = _session(sid)
    try:
        out = fn(sess)
    except EngineError as e:
        raise _engine_http_error(e)
    body = {"state": sess.snapshot(), "item": _current_item(sess)}
    if out is not None and not isinstance(out, bool):
        body["outcome"] = _serialize(out)
    elif isinstance(out, bool):
        body["moved"] = out
    return body


def _current_item(sess: AssessmentSession) -> dict[str, t.Any]:
    it = sess.current_item
    row = items_to_dicts([it])[0]
    ans = sess.answer_for(it.id)
    row["answer"] = _serialize(ans) if ans else None
    return row


def _config_from(req: StartReq) -> SessionConfig:
    if req.mode == "exam" and req.strategy:
        cfg = SessionConfig.exam_strategy(req.strategy, timed=req.timing_mode != "unbounded")
        if req.budget_seconds:
            cfg = cfg.model_copy(update={"budget_seconds": req.budget_seconds})
        return cfg
    return SessionConfig(
        mode=req.mode,
        timing_mode=req.timing_mode,
        budget_seconds=req.budget_seconds,
        topic_gating=req.topic_gating,
        required_answered_count=req.required_answered_count,
    )

# ---- Health ----
@app.get("/health")
def health():
    cfg = load_config()
    return {
        "grading_backend": get_backend(cfg) or "caller",
        "active_sessions": len(SESS),
        "azure_config_present": all(os.getenv(k) for k in [
            "AZURE_OPENAI_ENDPOINT","AZURE_OPENAI_API_KEY","AZURE_OPENAI_API_VERSION","AZURE_OPENAI_DEPLOYMENT"
        ])
    }

# ---- Session lifecycle ----
@app.post("/session/start")
def start(req: StartReq):
    try:
        cfg = _config_from(req)
        items = parse_items(req.items) if req.items is not None else load_sample(req.mode)
        log_q = EventLog()
        sess = AssessmentSession(items, cfg, on_event=log_q.append)
    except (ValidationError, ValueError) as e:
        raise HTTPException(422, str(e))
    except EngineError as e:
        raise _engine_http_error(e)
    SESS[sess.session_id] = sess
    EVENTS[sess.session_id] = log_q
    if req.realtime:
        sess.run_clock()
    return {
        "session_id": sess.session_id,
        "state": sess.snapshot(),
        "item": _current_item(sess),
        "items": items_to_dicts(sess.progress.order),
    }

@app.get("/session/{sid}")
def state(sid: str):
    sess = _session(sid)
    return {"state": sess.snapshot(), "item": _current_item(sess)}

@app.post("/session/{sid}/select")
def select(sid: str, req: SelectReq):
    return _call(sid, lambda s: s.select_option(req.item_id, req.index))

@app.post("/session/{sid}/text")
def free_text(sid: str, req: TextReq):
    return _call(sid, lambda s: s.set_free_text(req.item_id, req.text))

@app.post("/session/{sid}/part")
def part_text(sid: str, req: PartReq):
    return _call(sid, lambda s: s.set_part_text(req.item_id, req.part_label, req.text))

@app.post("/session/{sid}/advance")
def advance(sid: str):
    return _call(sid, lambda s: s.advance())

@app.post("/session/{sid}/retreat")
def retreat(sid: str):
    return _call(sid, lambda s: s.retreat())

@app.post("/session/{sid}/goto")
def goto(sid: str, req: GotoReq):
    return _call(sid, lambda s: s.go_to(req.item_id))

@app.post("/session/{sid}/retry")
def retry(sid: str):
    return _call(sid, lambda s: s.retry_topic())

@app.post("/session/{sid}/submit")
def submit(sid: str, confirm: bool = Query(False, description="Submit even though the compulsory item is empty")):
    sess = _session(sid)
    # check and submit under one hold so the timer cannot finalize in between
    with sess.lock:
        if sess.can_submit() and sess.requires_confirmation() and not confirm:
            raise HTTPException(428, "compulsory item unanswered; resubmit with confirm=true")
        body = _call(sid, lambda s: s.submit())
    sess.join_clock()
    return body

@app.post("/session/{sid}/discard")
def discard(sid: str):
    body = _call(sid, lambda s: s.discard())
    _session(sid).join_clock()
    return body

@app.post("/session/{sid}/grade")
def grade(sid: str, req: GradeReq | None = Body(default=None)):
    def _run(s: AssessmentSession):
        provider = provider_from_config(load_config(), req.grades if req else None)
        return s.grade_with(provider)
    return _call(sid, _run)

@app.get("/session/{sid}/result")
def result(sid: str):
    sess = _session(sid)
    if sess.result is None:
        raise HTTPException(404, f"no result yet (phase {sess.phase})")
    return _serialize(sess.result)

@app.get("/session/{sid}/events")
def events(sid: str, since: int = Query(0, ge=0)):
    sess = _session(sid)
    log_q = EVENTS.get(sid) or EventLog()
    with sess.lock:
        rows, nxt = log_q.since(since), log_q.next_seq
    return {"events": [_event_payload(s, e) for s, e in rows], "next": nxt}

@app.delete("/session/{sid}")
def close(sid: str):
    sess = _session(sid)
    with sess.lock:
        if sess.phase != "COMPLETE":
            sess.discard()
    sess.join_clock()
    SESS.pop(sid, None)
    EVENTS.pop(sid, None)
    return {"ok": True}
