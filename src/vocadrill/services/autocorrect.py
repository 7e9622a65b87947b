"""Live autocorrection for typed recall.

While the learner types, every character that does not match the target at
its position is rewritten to the target character before it is displayed, so
the visible answer always converges on the correct word. Scoring never looks
at the displayed string: it compares the original keystrokes with the target.
"""
from dataclasses import dataclass
from typing import Iterable, Tuple


@dataclass(frozen=True)
class TypedAnswer:
    """Both renditions of a typed answer."""
    original: str
    displayed: str
    corrections: int

    @property
    def autocorrected(self) -> bool:
        return self.corrections > 0

    def is_correct(self, target: str) -> bool:
        """Correct only when nothing was ever rewritten and the word is complete."""
        return self.original == target


def apply_keystroke(target: str, displayed: str, key: str) -> Tuple[str, bool]:
    """Append one keystroke to the displayed string.

    Returns the new displayed string and whether the keystroke was corrected.
    Keystrokes past the end of the target are not displayed and count as a
    correction.
    """
    position = len(displayed)
    if position >= len(target):
        return displayed, True
    expected = target[position]
    if key == expected:
        return displayed + key, False
    return displayed + expected, True


def autocorrect(target: str, keystrokes: Iterable[str]) -> TypedAnswer:
    """Replay a keystroke sequence against the target word."""
    original = []
    displayed = ""
    corrections = 0
    for keystroke in keystrokes:
        # A multi-character chunk (pasted text) is replayed key by key
        for key in keystroke:
            original.append(key)
            displayed, corrected = apply_keystroke(target, displayed, key)
            if corrected:
                corrections += 1
    return TypedAnswer(original="".join(original), displayed=displayed, corrections=corrections)
