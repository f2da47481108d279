"""
Cross-reference annotation

Rewrites "Clause 4.2", "Sub-clause 8.1(a)", "Article 3" ... into internal
anchors pointing at the referenced clause. Running the pass on its own output
changes nothing: existing generated anchors are matched first and copied
through untouched.
"""

import re
from typing import Optional

from clausesync.database.schemas import Clause

ANCHOR_PREFIX = '<a href="#clause-'

_CROSS_REFERENCE = re.compile(
    r'(?P<anchor><a href="#clause-[^"]*">.*?</a>)'
    r'|(?<![\w#-])(?P<ref>(?:sub-clause|sub-paragraph|clause|article|paragraph)'
    r'\s+(?P<number>\d+(?:\.\d+)*(?:\s*\([a-z0-9]\))?))',
    re.IGNORECASE | re.DOTALL,
)


def anchor_id(number: str) -> str:
    """Anchor target: the referenced number stripped to digits and dots"""
    return re.sub(r"[^0-9.]", "", number)


def _replace(match: re.Match) -> str:
    if match.group("anchor"):
        return match.group("anchor")
    return f'{ANCHOR_PREFIX}{anchor_id(match.group("number"))}">{match.group("ref")}</a>'


def linkify_text(text: Optional[str]) -> str:
    if not text:
        return ""
    return _CROSS_REFERENCE.sub(_replace, text)


def linkify_optional(text: Optional[str]) -> Optional[str]:
    """Like linkify_text but keeps an absent variant absent"""
    if text is None:
        return None
    return linkify_text(text)


def linkify_clause(clause: Clause) -> Clause:
    """Annotate the body and both condition variants of a clause"""
    return clause.model_copy(update={
        "clause_text": linkify_text(clause.clause_text),
        "general_condition": linkify_optional(clause.general_condition),
        "particular_condition": linkify_optional(clause.particular_condition),
    })
