"""Relevance gate for broadcast messages.

Campus-wide event announcements carry a conventional "bcc'd to dorms" style
signature. Messages without one of those signatures are not considered.
"""

from __future__ import annotations

import re
import unicodedata

SIGNATURE_PHRASES: tuple[str, ...] = (
    "bcc'd to all dorms",
    "bcc's to all dorms",
    "bcc'd to dorms",
    "bcc'ed dorms",
    "bcc'ed to dorms",
    "bcc to dorms",
    "bcc'd to everyone",
    "bcc dormlists",
    "bcc to dormlists",
    "for bc-talk",
)

_APOSTROPHES = str.maketrans({"\u2019": "'", "\u2018": "'", "\u02bc": "'"})


def _fold(text: str) -> str:
    """Case-fold, drop diacritics and normalize apostrophes."""

    decomposed = unicodedata.normalize("NFKD", text.translate(_APOSTROPHES))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


_SIGNATURE_RE = re.compile(
    "|".join(
        "(?:" + r"\s+".join(re.escape(word) for word in phrase.split()) + ")"
        for phrase in SIGNATURE_PHRASES
    )
)


def is_relevant(text: str) -> bool:
    """Return True if ``text`` carries a known broadcast signature.

    Matching ignores case and diacritics, and any run of whitespace in the text
    matches a single space in a signature phrase.
    """

    if not text:
        return False
    return _SIGNATURE_RE.search(_fold(text)) is not None
