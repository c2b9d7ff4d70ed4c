from __future__ import annotations

import html
import math
import re
from dataclasses import dataclass

_WHITESPACE_SPLIT = re.compile(r"(\s+)")
_WORD_CHAR = re.compile(r"\w")
_SPAN_TAG = re.compile(r"</?span\b[^>]*>")

DEFAULT_BOLD_STYLE = "font-weight: 600; color: #3d2914;"
DEFAULT_NORMAL_STYLE = "font-weight: 300; color: #6b5b4d;"


@dataclass(frozen=True, slots=True)
class BionicStyle:
    bold: str = DEFAULT_BOLD_STYLE
    normal: str = DEFAULT_NORMAL_STYLE


DEFAULT_STYLE = BionicStyle()


@dataclass(frozen=True, slots=True)
class BionicWord:
    """A word token split into its emphasized prefix and the remainder."""

    original: str
    bold_prefix_length: int
    split_index: int

    @property
    def bold(self) -> str:
        return self.original[: self.split_index]

    @property
    def normal(self) -> str:
        return self.original[self.split_index :]


def split_tokens(text: str) -> list[str]:
    """
    Split text into word and whitespace tokens.

    Whitespace runs are kept as their own tokens so that joining the result
    gives back the input unchanged.
    """
    return [token for token in _WHITESPACE_SPLIT.split(text) if token]


def word_char_count(token: str) -> int:
    return len(_WORD_CHAR.findall(token))


def bold_prefix_length(word_chars: int) -> int:
    if word_chars <= 0:
        return 0
    if word_chars <= 2:
        return 1
    if word_chars <= 5:
        return 2
    return math.ceil(word_chars * 0.4)


def bionic_word(token: str) -> BionicWord | None:
    """Return the split for a non-whitespace token, or None when it has no word characters."""
    target = bold_prefix_length(word_char_count(token))
    if target == 0:
        return None
    seen = 0
    for idx, ch in enumerate(token):
        if _WORD_CHAR.match(ch):
            seen += 1
            if seen == target:
                return BionicWord(original=token, bold_prefix_length=target, split_index=idx + 1)
    return None


def bionic_tokens(text: str) -> list[str | BionicWord]:
    """Tokenize text, replacing each emphasizable word with a BionicWord."""
    if not text.strip():
        return []
    tokens: list[str | BionicWord] = []
    for token in split_tokens(text):
        if token.isspace():
            tokens.append(token)
            continue
        word = bionic_word(token)
        tokens.append(word if word is not None else token)
    return tokens


def _escape(text: str) -> str:
    return html.escape(text, quote=False)


def render_word(word: BionicWord, style: BionicStyle = DEFAULT_STYLE) -> str:
    return (
        f'<span style="{html.escape(style.bold)}">{_escape(word.bold)}</span>'
        f'<span style="{html.escape(style.normal)}">{_escape(word.normal)}</span>'
    )


def convert_to_bionic(text: str, style: BionicStyle = DEFAULT_STYLE) -> str:
    """
    Convert plain text to bionic reading markup.

    Each word becomes a bold span holding its leading word characters
    followed by a normal span holding the rest. Whitespace is emitted
    verbatim. The output is already markup: applying this function to its
    own output wraps the tags again, so call it once per original text.
    """
    parts: list[str] = []
    for token in bionic_tokens(text):
        if isinstance(token, BionicWord):
            parts.append(render_word(token, style))
        else:
            parts.append(_escape(token))
    return "".join(parts)


def strip_bionic_markup(markup: str) -> str:
    """Drop the emphasis spans and unescape entities, recovering the source text."""
    return html.unescape(_SPAN_TAG.sub("", markup))
