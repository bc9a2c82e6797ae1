"""Best-effort structure from research prose.

Search providers answer in loosely formatted markdown. These heuristics pull
bullet lists out of keyword-named sections, harvest quoted phrases as
customer language, and read a persona out of narrative text. They are
deliberately forgiving: anything they miss is simply absent from the result.
"""

from __future__ import annotations

import re
from typing import Protocol

import config
from schemas.research import (
    BuyingJourney,
    CustomerAvatar,
    Demographics,
    LanguageProfile,
    ProblemProfile,
    Psychographics,
    TransformationLists,
    VoiceOfCustomer,
)

_BULLET_RE = re.compile(r"^(?:[-•*]|\d+[.)])\s*(.+)")
_MD_HEADER_RE = re.compile(r"^#{1,6}\s*")
_QUOTE_RE = re.compile(r"\"([^\"\n]+)\"|(?<!\w)'([^'\n]+)'(?!\w)|“([^”\n]+)”")

# (section, keywords); first match wins
_SECTION_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("pain_points", ("pain point", "frustrat", "complaint")),
    ("praises", ("love", "praise", "positive", "five-star", "5-star")),
    ("questions", ("question", "ask")),
    ("objections", ("objection", "hesitat", "concern", "negative")),
    ("language_patterns", ("language", "phrase", "pattern")),
    ("purchase_triggers", ("trigger", "decision", "made them buy")),
    ("customer_profiles", ("who is", "customer", "profile", "demographic")),
]

MIN_ITEM_CHARS = 5
MIN_QUOTE_CHARS = 5
MAX_QUOTE_CHARS = 100
MAX_RESONANT_PHRASES = 15


class EvidenceExtractor(Protocol):
    def extract(self, text: str) -> VoiceOfCustomer:
        """Turn research prose into section lists."""


# ---------------------------------------------------------------------------
# Line helpers
# ---------------------------------------------------------------------------

def _bullet_text(line: str) -> str | None:
    match = _BULLET_RE.match(line.strip())
    if not match:
        return None
    return _clean_item(match.group(1))


def _clean_item(text: str) -> str:
    cleaned = text.strip().strip("*_").strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in {'"', "'"}:
        cleaned = cleaned[1:-1].strip()
    return cleaned


def is_header_line(line: str) -> bool:
    """Markdown header, bold line, trailing colon or a short non-sentence line."""
    stripped = line.strip()
    if not stripped or _BULLET_RE.match(stripped):
        return False
    if stripped.startswith("#"):
        return True
    if stripped.startswith("**") and stripped.rstrip(":").endswith("**"):
        return True
    if stripped.endswith(":"):
        return True
    return len(stripped) <= 60 and stripped[-1] not in ".!?\"'”"


def _section_for(header: str) -> str | None:
    lower = header.lower()
    for section, keywords in _SECTION_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return section
    return None


def _dedupe_key(text: str) -> str:
    return " ".join(text.lower().split())


def _append_unique(items: list[str], value: str, cap: int) -> None:
    if len(items) >= cap:
        return
    key = _dedupe_key(value)
    if any(_dedupe_key(existing) == key for existing in items):
        return
    items.append(value)


def extract_quotes(text: str, *, limit: int | None = None) -> list[str]:
    """Quoted substrings of 5-100 characters, in document order, de-duplicated."""
    quotes: list[str] = []
    for match in _QUOTE_RE.finditer(text or ""):
        if limit is not None and len(quotes) >= limit:
            break
        quote = (match.group(1) or match.group(2) or match.group(3) or "").strip()
        if MIN_QUOTE_CHARS < len(quote) < MAX_QUOTE_CHARS:
            _append_unique(quotes, quote, len(quotes) + 1)
    return quotes


# ---------------------------------------------------------------------------
# Section extractor
# ---------------------------------------------------------------------------

class KeywordEvidenceExtractor:
    """Keyword-driven section parser for markdown-ish research answers."""

    def __init__(
        self,
        list_cap: int | None = None,
        language_cap: int | None = None,
        transformation_cap: int | None = None,
    ):
        self.list_cap = config.RESEARCH_LIST_CAP if list_cap is None else list_cap
        self.language_cap = config.RESEARCH_LANGUAGE_CAP if language_cap is None else language_cap
        self.transformation_cap = (
            config.RESEARCH_TRANSFORMATION_CAP if transformation_cap is None else transformation_cap
        )

    def extract(self, text: str) -> VoiceOfCustomer:
        lists: dict[str, list[str]] = {section: [] for section, _ in _SECTION_KEYWORDS}
        transformations = TransformationLists()
        current: str | None = None
        side = "before"
        collected = 0

        for raw_line in (text or "").splitlines():
            line = raw_line.strip()
            if not line:
                if collected:
                    current = None
                    collected = 0
                continue

            if is_header_line(line):
                lower = line.lower()
                section = _section_for(lower)
                if section is None and "before" in lower and "after" in lower:
                    current, side = "transformations", "before"
                elif current == "transformations" and section is None and "after" in lower:
                    side = "after"
                elif current == "transformations" and section is None and "before" in lower:
                    side = "before"
                elif section is not None:
                    current = section
                elif _MD_HEADER_RE.match(line):
                    current = None
                collected = 0
                continue

            item = _bullet_text(line)
            if item is None or current is None or len(item) <= MIN_ITEM_CHARS:
                continue
            if current == "transformations":
                _append_unique(getattr(transformations, side), item, self.transformation_cap)
            elif current == "language_patterns":
                _append_unique(lists[current], item, self.language_cap)
            else:
                _append_unique(lists[current], item, self.list_cap)
            collected += 1

        for quote in extract_quotes(text):
            _append_unique(lists["language_patterns"], quote, self.language_cap)

        return VoiceOfCustomer(transformations=transformations, **lists)


# ---------------------------------------------------------------------------
# Avatar prose
# ---------------------------------------------------------------------------

_NAME_RE = re.compile(r"(?i:named?)\s*(?::|is)?\s*[\"']?([A-Z][a-z]+)")
_AGE_RE = re.compile(r"(\d{2})\s*(?:years?\s*old|yo\b|-year)", re.IGNORECASE)
_LOCATION_RE = re.compile(r"(?:lives?\s+in|located\s+in|based\s+in|from)\s+([^.,\n]+)", re.IGNORECASE)
_INCOME_RE = re.compile(r"(?:income|earns?|makes?)\s*(?::|of)?\s*\$?(\d[\d,]*k?)", re.IGNORECASE)
_OCCUPATION_RE = re.compile(r"(?:works?\s+as|occupation|job)\s*(?::|is)?\s*([^.,\n]+)", re.IGNORECASE)

DEFAULT_DEMOGRAPHICS = Demographics(
    name="Sarah",
    age="32",
    location="suburban area",
    income="middle income",
    occupation="working professional",
)


def _pattern(text: str, regex: re.Pattern[str]) -> str:
    match = regex.search(text)
    return match.group(1).strip() if match else ""


def extract_list(text: str, keyword: str) -> list[str]:
    """Bullets following the first line that mentions `keyword`."""
    results: list[str] = []
    in_section = False
    for line in (text or "").splitlines():
        if not in_section:
            if keyword in line.lower():
                in_section = True
            continue
        item = _bullet_text(line)
        if item and len(item) > 3:
            results.append(item)
        if re.match(r"^#{1,3}\s", line) or (not line.strip() and results):
            break
    return results


def extract_paragraph(text: str, keyword: str) -> str:
    """First prose line (> 30 chars) within three lines after a `keyword` mention."""
    lines = (text or "").splitlines()
    for i, line in enumerate(lines):
        if keyword not in line.lower():
            continue
        for candidate in lines[i + 1:i + 4]:
            candidate = candidate.strip()
            if len(candidate) > 30 and not candidate.startswith(("-", "#")):
                return candidate
    return ""


def _first_list(text: str, *keywords: str) -> list[str]:
    for keyword in keywords:
        found = extract_list(text, keyword)
        if found:
            return found
    return []


def _first_paragraph(text: str, *keywords: str) -> str:
    for keyword in keywords:
        found = extract_paragraph(text, keyword)
        if found:
            return found
    return ""


def parse_avatar_text(text: str) -> CustomerAvatar:
    """Read a persona out of narrative research text.

    Demographics fall back to a generic persona so downstream prompts always
    have someone to write for.
    """
    text = text or ""
    defaults = DEFAULT_DEMOGRAPHICS
    return CustomerAvatar(
        demographics=Demographics(
            name=_pattern(text, _NAME_RE) or defaults.name,
            age=_pattern(text, _AGE_RE) or defaults.age,
            location=_pattern(text, _LOCATION_RE) or defaults.location,
            income=_pattern(text, _INCOME_RE) or defaults.income,
            occupation=_pattern(text, _OCCUPATION_RE) or defaults.occupation,
        ),
        psychographics=Psychographics(
            values=extract_list(text, "values"),
            fears=extract_list(text, "fears"),
            aspirations=_first_list(text, "aspirations", "goals"),
            frustrations=extract_list(text, "frustrations"),
        ),
        problem=ProblemProfile(
            experience=_first_paragraph(text, "problem", "struggle"),
            worst_moment=extract_paragraph(text, "worst"),
            tried_before=extract_list(text, "tried"),
        ),
        buying_journey=BuyingJourney(
            trigger=extract_paragraph(text, "trigger"),
            alternatives=_first_list(text, "alternatives", "considered"),
            objections=extract_list(text, "objections"),
            convinced=_first_paragraph(text, "convinced", "buy"),
        ),
        language_profile=LanguageProfile(
            problem_descriptions=_first_list(text, "describe", "language"),
            resonant_phrases=extract_quotes(text, limit=MAX_RESONANT_PHRASES),
            search_terms=extract_list(text, "search"),
        ),
        day_in_life=_first_paragraph(text, "day", "typical"),
    )
