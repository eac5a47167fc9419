"""Flat lookup over the raw process argument tokens."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


class ArgumentStore:
    """Read-only view of single-dash argument tokens (``-client 10 -server``).

    No well-formedness checks are made: a flag that expects a value but
    is the last token simply has no value.
    """

    __slots__ = ("_tokens",)

    def __init__(self, tokens: Iterable[str]) -> None:
        self._tokens: tuple[str, ...] = tuple(tokens)

    @classmethod
    def from_string(cls, text: str) -> ArgumentStore:
        """Build a store from one space-delimited override string.

        Used when the harness is driven from an interactive session rather
        than a real command line.
        """
        return cls(token for token in text.split(" ") if token)

    @property
    def tokens(self) -> tuple[str, ...]:
        return self._tokens

    def has_flag(self, name: str) -> bool:
        """Return whether a bare token equal to *name* is present."""
        return name in self._tokens

    def value_of(self, name: str) -> str | None:
        """Return the token after the first occurrence of *name*.

        :returns: The following token, or ``None`` if *name* is absent or
            is the last token.
        """
        try:
            index = self._tokens.index(name)
        except ValueError:
            return None
        if index + 1 >= len(self._tokens):
            return None
        return self._tokens[index + 1]

    def __repr__(self) -> str:
        return f"ArgumentStore({list(self._tokens)!r})"
