"""
Derive the counterpart company from a meeting title.

Titles follow loose conventions such as ``"Console/Lattice (Legal)"``,
``"(Clio/Console) - Connection Call"`` or ``"Console // Goat HR focused demo"``.
Deterministic and pure: the operator's own company name is passed in.
"""

import re
from typing import Optional

# Separators between the two parties, longest first so "//" wins over "/"
_SEPARATOR_RE = re.compile(r"\s*//\s*|\s*<>\s*|\s*/\s*|\s+x\s+", re.IGNORECASE)

_WRAPPED_RE = re.compile(r"^\s*\((?P<inner>[^()]*)\)")
_NAME_WITH_PAREN_RE = re.compile(r"^(?P<name>[^()]+?)\s*\((?P<inner>[^()]*)\)\s*(?P<rest>.*)$")
_DASH_SUFFIX_RE = re.compile(r"\s+[-–—|:]\s+.*$")

# Function/team words that appear in parentheses after the company name
ROLE_DESCRIPTORS = frozenset({
    "legal", "hr", "it", "security", "infosec", "finance", "procurement",
    "engineering", "eng", "ops", "operations", "people", "people ops",
    "sales", "marketing", "leadership", "exec", "executive", "compliance",
    "product", "technical", "tech", "admin", "it team", "hr team",
})

# Trailing free-text words stripped from the company token
TRAILING_DESCRIPTORS = frozenset({
    "demo", "sync", "kickoff", "kick-off", "intro", "introduction", "call",
    "meeting", "chat", "discussion", "discovery", "follow-up", "followup",
    "focused", "review", "walkthrough", "onboarding",
    "connection", "check-in", "checkin", "session", "overview", "deep-dive",
    "touchbase", "touch-base", "recap", "planning",
})


def _strip_trailing_descriptors(token: str) -> str:
    token = _DASH_SUFFIX_RE.sub("", token).strip()
    words = token.split()
    while len(words) > 1 and words[-1].lower().strip(".,!") in TRAILING_DESCRIPTORS:
        words.pop()
    return " ".join(words).strip(" -,:")


def parse_meeting_title(title: str, operator_name: str) -> Optional[str]:
    """
    Return the counterpart company named in a meeting title, or None.

    None when no party separator is present or nothing but the operator's
    name remains after splitting.
    """
    if not title:
        return None

    working = title.strip()
    wrapped = _WRAPPED_RE.match(working)
    if wrapped and _SEPARATOR_RE.search(wrapped.group("inner")):
        working = wrapped.group("inner")

    if not _SEPARATOR_RE.search(working):
        return None

    operator = operator_name.strip().lower()
    tokens = [t.strip() for t in _SEPARATOR_RE.split(working) if t and t.strip()]
    candidates = [t for t in tokens if t.lower() != operator]
    if not candidates:
        return None

    token = candidates[0]
    paren = _NAME_WITH_PAREN_RE.match(token)
    if paren:
        name = paren.group("name").strip()
        inner = paren.group("inner").strip()
        if inner.lower() in ROLE_DESCRIPTORS:
            return name or None
        if inner and inner.lower() != operator:
            return inner
        token = name

    cleaned = _strip_trailing_descriptors(token)
    return cleaned or None


def guess_company_domain(company_name: str) -> str:
    """'Fannie Mae' -> 'fanniemae.com'."""
    return re.sub(r"[^a-z0-9]", "", company_name.lower()) + ".com"
