# app_cli/run_session.py
from __future__ import annotations
import argparse, json, os, sys
from typing import Any, Dict

from assess_core.config import SessionConfig, load_config, get_backend
from assess_core.engine import AssessmentSession
from assess_core.errors import EngineError
from assess_core.grading import AzureGradingProvider, StaticGradingProvider
from assess_core.items import load_items, load_sample
from assess_core.types import Item

HELP = "Commands: <index>|<text> answer, n next, p previous, g <id> go to, s submit, q discard"


def _ask_int(prompt: str, default: int = 0) -> int:
    try:
        s = input(prompt).strip()
        if s == "": return default
        return int(s)
    except ValueError:
        return default


def _show(sess: AssessmentSession, it: Item) -> None:
    st = sess.snapshot()
    clock = f" | {st['remaining_time']}s left" if st["remaining_time"] is not None else ""
    print(f"\n--- {it.kind} | {it.topic} | {st['current_index'] + 1}/{st['total_items']}{clock} ---")
    print(it.text)
    if it.is_essay:
        tag = " (compulsory)" if it.is_compulsory else ""
        print(f"[{it.total_points} marks{tag}]")
        ans = sess.answer_for(it.id)
        for p in it.parts:
            done = "x" if ans and (ans.parts.get(p.label) or "").strip() else " "
            print(f"  [{done}] ({p.label}) {p.text}  [{p.points}]")
    else:
        for i, opt in enumerate(it.options): print(f"  [{i}] {opt}")


def _answer(sess: AssessmentSession, it: Item, raw: str) -> None:
    if it.is_essay:
        label = input("Part label: ").strip()
        sess.set_part_text(it.id, label, raw)
    elif it.kind == "FILL_IN_GAP":
        sess.set_free_text(it.id, raw)
    elif raw.isdigit():
        sess.select_option(it.id, int(raw))
    else:
        print("Enter an option index.")


def _operator_grades(sess: AssessmentSession) -> StaticGradingProvider:
    grades: Dict[str, Any] = {}
    for row in sess.pending_grading():
        it = row["item"]
        print(f"\nGrade item {it.id}: {it.text}")
        scores: Dict[str, Any] = {}
        for p in it.parts:
            print(f"  ({p.label}) {row['part_answers'].get(p.label, '')!r}")
            scores[p.label] = _ask_int(f"  marks for {p.label} (0..{p.points}): ", 0)
        grades[it.id] = scores
    return StaticGradingProvider(grades)


def play(sess: AssessmentSession) -> None:
    print(HELP)
    while sess.phase in ("IN_PROGRESS", "TOPIC_GATE_SHOWN"):
        if sess.phase == "TOPIC_GATE_SHOWN":
            print(f"Topic not mastered ({sess.topic_gate_status}). Retrying the topic.")
            sess.retry_topic()
        it = sess.current_item
        _show(sess, it)
        raw = input("> ").strip()
        try:
            if raw == "n": sess.advance()
            elif raw == "p": sess.retreat()
            elif raw.startswith("g "): sess.go_to(raw[2:].strip())
            elif raw == "s":
                if sess.requires_confirmation() and input("Compulsory item is empty. Submit anyway? [y/N] ").strip().lower() != "y":
                    continue
                sess.submit()
            elif raw == "q": sess.discard()
            elif raw: _answer(sess, it, raw)
        except EngineError as e:
            print(f"! {e.reason}")


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--mode", choices=["quiz","exam"], default="quiz")
    ap.add_argument("--items", help="item JSON file; bundled sample when omitted")
    ap.add_argument("--timer", choices=["unbounded","per_item","total_session"], default="unbounded")
    ap.add_argument("--budget", type=int, default=0, help="seconds")
    ap.add_argument("--gating", action="store_true", help="topic mastery gate (quiz)")
    ap.add_argument("--strategy", choices=["3_OF_5","5_OF_7"], default="3_OF_5")
    ap.add_argument("--llm", choices=["none","azure"], default="none")
    a = ap.parse_args()
    if a.llm != "none":
        os.environ["USE_LLM_GRADING"] = "1"; os.environ["LLM_BACKEND"] = a.llm

    items = load_items(a.items) if a.items else load_sample(a.mode)
    if a.mode == "exam":
        cfg = SessionConfig.exam_strategy(a.strategy, timed=a.timer != "unbounded")
    else:
        cfg = SessionConfig.quiz(a.timer, a.budget, topic_gating=a.gating)
    sess = AssessmentSession(items, cfg)
    sess.run_clock()
    try:
        play(sess)
    except KeyboardInterrupt:
        print("\nStopped by user.")
        if sess.phase != "COMPLETE": sess.discard()
    sess.join_clock()

    if sess.phase == "FINALIZING":
        provider = AzureGradingProvider() if get_backend(load_config()) == "azure" else _operator_grades(sess)
        sess.grade_with(provider)
    res = sess.result
    print(json.dumps(res, default=lambda o: getattr(o, "__dict__", o), indent=2))
    return 0 if res is not None and res.passed else 1


if __name__ == "__main__":
    sys.exit(main())
