from __future__ import annotations
from collections import Counter
import argparse, os, sys
from assess_core.errors import InvalidItems
from assess_core.items import group_by_topic, load_items, load_sample

# Minimum items per topic before a mastery gate is meaningful
TARGETS = {
    "per_topic_min": int(os.getenv("TARGET_PER_TOPIC_MIN", 3)),
}

def report(items) -> list[str]:
    """Per-topic counts plus the warnings worth fixing before a gated run."""
    lines: list[str] = []
    warnings: list[str] = []
    for topic, grp in group_by_topic(items).items():
        kinds = Counter(it.kind for it in grp)
        detail = ", ".join(f"{k}={v}" for k, v in sorted(kinds.items()))
        lines.append(f"{topic}: {len(grp)} items ({detail})")
        if len(grp) < TARGETS["per_topic_min"]:
            warnings.append(f"  → {topic}: only {len(grp)} item(s); one miss decides the mastery gate")
    essays = [it for it in items if it.is_essay]
    if essays:
        comp = [it.id for it in essays if it.is_compulsory]
        lines.append(f"essay items: {len(essays)}, compulsory: {comp or 'none (item 1 assumed)'}")
        lines.append(f"essay points: {sum(it.total_points for it in essays)}")
    return lines + (warnings or ["  ✓ Meets targets"])

def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("path", nargs="?", help="item JSON file")
    ap.add_argument("--sample", choices=["quiz","exam"], default="quiz")
    a = ap.parse_args()
    try:
        items = load_items(a.path) if a.path else load_sample(a.sample)
    except InvalidItems as e:
        print(f"invalid: {e.reason}", file=sys.stderr)
        return 1
    for line in report(items):
        print(line)
    return 0

if __name__ == "__main__":
    sys.exit(main())
