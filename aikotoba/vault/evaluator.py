"""
Guess evaluation — positional feedback without revealing the secret.

The feedback is computed in two passes so that repeated digits are counted
correctly:

1. Every position where guess and secret agree is EXACT and its digit is
   removed from the pool of unmatched secret digits.
2. Remaining positions, left to right, are PARTIAL while the pool still holds
   that digit (taking one instance out), otherwise WRONG.

Example: secret "112", guess "211" -> [PARTIAL, EXACT, PARTIAL].
"""

from __future__ import annotations

from collections import Counter

from aikotoba.vault.errors import InvalidGuessFormat
from aikotoba.vault.models import SYMBOL_TO_HINT, Hint, is_digit_string


def validate_guess(guess: object, length: int) -> str:
    """Return ``guess`` if it is exactly ``length`` ASCII digits."""
    if not isinstance(guess, str) or not is_digit_string(guess, length):
        raise InvalidGuessFormat(f"guess must be exactly {length} digits")
    return guess


def evaluate(secret: str, guess: str) -> list[Hint]:
    validate_guess(guess, len(secret))

    hints: list[Hint | None] = [None] * len(secret)
    unmatched: Counter[str] = Counter()
    for i, (s, g) in enumerate(zip(secret, guess)):
        if s == g:
            hints[i] = Hint.EXACT
        else:
            unmatched[s] += 1

    for i, g in enumerate(guess):
        if hints[i] is not None:
            continue
        if unmatched[g] > 0:
            hints[i] = Hint.PARTIAL
            unmatched[g] -= 1
        else:
            hints[i] = Hint.WRONG

    return [h for h in hints if h is not None]


def is_solved(hints: list[Hint] | tuple[Hint, ...]) -> bool:
    return bool(hints) and all(h is Hint.EXACT for h in hints)


def hints_to_wire(hints: list[Hint] | tuple[Hint, ...]) -> str:
    return "".join(h.symbol for h in hints)


def hints_from_wire(text: str) -> list[Hint]:
    try:
        return [SYMBOL_TO_HINT[c] for c in text]
    except KeyError as e:
        raise ValueError(f"unknown hint symbol: {e.args[0]!r}") from None
