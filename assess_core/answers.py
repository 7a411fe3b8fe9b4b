from __future__ import annotations
from copy import deepcopy
from typing import Dict, Iterable, List, Mapping, Optional

from .types import Answer, Item, CHOICE_KINDS
from .errors import InvalidAnswer, InvalidState, UnknownItem


class AnswerStore:
    """Learner responses keyed by item id.

    Entries survive navigation in both directions; only ``clear`` (topic retry)
    removes them. Once frozen the store refuses every mutation.
    """

    def __init__(self, items: Iterable[Item]):
        self._items: Dict[str, Item] = {it.id: it for it in items}
        self._answers: Dict[str, Answer] = {}
        self._frozen = False

    def _item(self, item_id: str) -> Item:
        it = self._items.get(item_id)
        if it is None:
            raise UnknownItem(item_id)
        return it

    def _entry(self, item_id: str) -> Answer:
        if self._frozen:
            raise InvalidState("answers are frozen")
        ans = self._answers.get(item_id)
        if ans is None:
            ans = self._answers[item_id] = Answer(item_id=item_id)
        return ans

    @property
    def frozen(self) -> bool:
        return self._frozen

    def select_option(self, item_id: str, index: int) -> Answer:
        it = self._item(item_id)
        if it.kind not in CHOICE_KINDS:
            raise InvalidAnswer(f"{item_id} is a {it.kind} item; options do not apply")
        try:
            idx = int(index)
        except (TypeError, ValueError):
            raise InvalidAnswer(f"option index for {item_id} must be an integer, got {index!r}")
        if not (0 <= idx < len(it.options)):
            raise InvalidAnswer(f"option {idx} out of range for {item_id}")
        ans = self._entry(item_id)
        ans.selected_index = idx
        return ans

    def set_text(self, item_id: str, text: str) -> Answer:
        it = self._item(item_id)
        if it.kind != "FILL_IN_GAP":
            raise InvalidAnswer(f"{item_id} is a {it.kind} item; free text does not apply")
        ans = self._entry(item_id)
        ans.text = "" if text is None else str(text)
        return ans

    def set_part_text(self, item_id: str, label: str, text: str) -> Answer:
        it = self._item(item_id)
        if not it.is_essay:
            raise InvalidAnswer(f"{item_id} is a {it.kind} item; parts do not apply")
        if it.part(label) is None:
            raise InvalidAnswer(f"{item_id} has no part {label!r}")
        ans = self._entry(item_id)
        ans.parts[label] = "" if text is None else str(text)
        return ans

    def get(self, item_id: str) -> Optional[Answer]:
        self._item(item_id)
        return self._answers.get(item_id)

    def is_answered(self, item_id: str) -> bool:
        ans = self.get(item_id)
        return ans is not None and ans.is_answered(self._items[item_id])

    def answered_count(self, item_ids: Optional[Iterable[str]] = None) -> int:
        ids = list(item_ids) if item_ids is not None else list(self._items)
        return sum(1 for iid in ids if self.is_answered(iid))

    def clear(self, item_ids: Iterable[str]) -> List[str]:
        if self._frozen:
            raise InvalidState("answers are frozen")
        cleared = []
        for iid in item_ids:
            self._item(iid)
            if self._answers.pop(iid, None) is not None:
                cleared.append(iid)
        return cleared

    def freeze(self) -> Dict[str, Answer]:
        """Stop accepting edits and return a deep copy detached from the store."""
        self._frozen = True
        return self.snapshot()

    def snapshot(self) -> Dict[str, Answer]:
        return deepcopy(self._answers)

    def as_mapping(self) -> Mapping[str, Answer]:
        return dict(self._answers)
