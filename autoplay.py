# autoplay.py
from __future__ import annotations
import argparse, json, random
from typing import Any, Dict, Optional
from assess_core.config import SessionConfig
from assess_core.engine import AssessmentSession
from assess_core.grading import StaticGradingProvider
from assess_core.items import load_sample
from assess_core.types import Item, Result

PROFILES = ("perfect", "all-wrong", "random", "idle", "first-topic-fail")

ESSAY_TEXT = "State the definition, give one worked example, and name the key terms from the notes."

def _wrong_index(it: Item) -> int:
    return (int(it.correct_index or 0) + 1) % max(1, len(it.options))

def _answer(sess: AssessmentSession, it: Item, profile: str, rng: random.Random, wrong: bool = False) -> None:
    bad = wrong or profile == "all-wrong"
    if it.is_essay:
        for p in it.parts:
            sess.set_part_text(it.id, p.label, "not sure" if bad else ESSAY_TEXT)
        return
    if profile == "random" and not wrong:
        if it.kind == "FILL_IN_GAP":
            sess.set_free_text(it.id, rng.choice([it.correct_text or "", "no idea"]))
        else:
            sess.select_option(it.id, rng.randrange(len(it.options)))
        return
    if it.kind == "FILL_IN_GAP":
        # case and padding are forgiven by the gap matcher
        sess.set_free_text(it.id, "wrong" if bad else f"  {(it.correct_text or '').upper()} ")
    else:
        sess.select_option(it.id, _wrong_index(it) if bad else int(it.correct_index or 0))

def _full_marks(sess: AssessmentSession, profile: str) -> StaticGradingProvider:
    if profile == "all-wrong":
        return StaticGradingProvider({})
    return StaticGradingProvider({row["item"].id: {p.label: p.points for p in row["item"].parts}
                                  for row in sess.pending_grading()})

def play(sess: AssessmentSession, profile: str, seed: Optional[int] = None, max_steps: int = 10_000) -> Result:
    """Drive ``sess`` to completion with a scripted learner profile.

    ``first-topic-fail`` misses the whole first topic once, then retries it
    correctly; every other profile answers each item as it comes.
    """
    rng = random.Random(seed or 1234)
    failed: set[str] = set()
    first_topic = sess.current_item.topic
    for _ in range(max_steps):
        if sess.phase == "COMPLETE":
            break
        if sess.phase == "FINALIZING":
            return sess.grade_with(_full_marks(sess, profile))
        if sess.phase == "TOPIC_GATE_SHOWN":
            failed.add(sess.current_item.topic)
            sess.retry_topic()
            continue
        if profile == "idle":
            if sess.tick() is None:
                sess.discard()
            continue
        it = sess.current_item
        miss = profile == "first-topic-fail" and it.topic == first_topic and it.topic not in failed
        _answer(sess, it, profile, rng, wrong=miss)
        if sess.cfg.mode == "exam" and sess.can_submit():
            sess.submit()
            continue
        sess.advance()
    if sess.result is None:
        raise RuntimeError(f"profile {profile} did not finish in {max_steps} steps")
    return sess.result

def run(mode: str, profile: str, seed: Optional[int] = None, gating: bool = False) -> Dict[str, Any]:
    items = load_sample(mode)
    if mode == "exam":
        cfg = SessionConfig.exam_strategy("3_OF_5", timed=profile == "idle")
    elif profile == "idle":
        cfg = SessionConfig.quiz("total_session", 30, topic_gating=gating)
    else:
        cfg = SessionConfig.quiz("unbounded", 0, topic_gating=gating or profile == "first-topic-fail")
    res = play(AssessmentSession(items, cfg), profile, seed)
    return json.loads(json.dumps(res, default=lambda o: getattr(o, "__dict__", o)))

def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--mode", choices=["quiz", "exam"], default="quiz")
    ap.add_argument("--profile", choices=PROFILES, default="perfect")
    ap.add_argument("--seed", type=int, default=1337)
    ap.add_argument("--gating", action="store_true")
    a = ap.parse_args()
    print(json.dumps(run(a.mode, a.profile, a.seed, a.gating), indent=2))

if __name__ == "__main__":
    main()
