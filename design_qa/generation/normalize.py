"""Text normalization and final ordering of test cases.

normalize_records() enforces the writing conventions on one phase's output:
  - every text field trimmed
  - numbered-list markers (``1.``, ``2.`` ...) start on their own line
  - step lines never end with a period

post_process() is the final reconciliation: stable sort by the
(depth1, depth2, depth3) category path under Korean-aware collation, then
renumber 1..N. That numbering is the only one consumers may rely on.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable, List, Sequence, Tuple

from .records import TestCaseRecord

# Whitespace before "N." (not a decimal like "2.5") becomes a line break
_LIST_MARKER_RE = re.compile(r"\s+(\d+\.)(?!\d)")


def format_numbered_list(text: str) -> str:
    formatted = _LIST_MARKER_RE.sub(r"\n\1", (text or "").strip())
    return formatted[1:] if formatted.startswith("\n") else formatted


def format_steps(text: str) -> str:
    lines = format_numbered_list(text).split("\n")
    return "\n".join(re.sub(r"\.$", "", line.strip()) for line in lines)


def normalize_record(record: TestCaseRecord) -> TestCaseRecord:
    return record.model_copy(update={
        "title": record.title.strip(),
        "depth1": record.depth1.strip(),
        "depth2": record.depth2.strip(),
        "depth3": record.depth3.strip(),
        "precondition": format_numbered_list(record.precondition),
        "steps": format_steps(record.steps),
        "expected_result": record.expected_result.strip(),
    })


def normalize_records(records: Iterable[TestCaseRecord]) -> List[TestCaseRecord]:
    return [normalize_record(r) for r in records]


# Character classes in Korean collation order
_RANK_SYMBOL, _RANK_DIGIT, _RANK_HANGUL, _RANK_HAN, _RANK_OTHER = range(5)

CharKey = Tuple[int, str]


def _char_rank(ch: str) -> int:
    code = ord(ch)
    if 0xAC00 <= code <= 0xD7A3 or 0x1100 <= code <= 0x11FF or 0x3130 <= code <= 0x318F:
        return _RANK_HANGUL
    category = unicodedata.category(ch)
    if category == "Nd":
        return _RANK_DIGIT
    if category[0] in "ZPSC":
        return _RANK_SYMBOL
    if 0x3400 <= code <= 0x4DBF or 0x4E00 <= code <= 0x9FFF or 0xF900 <= code <= 0xFAFF:
        return _RANK_HAN
    return _RANK_OTHER


def collation_key(value: str) -> Tuple[Tuple[CharKey, ...], str]:
    """Sort key following Korean locale collation.

    Characters compare by class first: spaces and punctuation, then digits,
    then Hangul (precomposed syllables are laid out in dictionary order),
    then Hanja, then Latin and other scripts. Within a class the
    compatibility-normalized, case-folded character decides. Remaining ties
    put lowercase before uppercase.
    """
    text = unicodedata.normalize("NFC", (value or "").strip())
    folded = unicodedata.normalize("NFKC", text).casefold()
    return tuple((_char_rank(ch), ch) for ch in folded), text.swapcase()


def _category_key(record: TestCaseRecord) -> Tuple[Tuple[Tuple[CharKey, ...], str], ...]:
    return (
        collation_key(record.depth1),
        collation_key(record.depth2),
        collation_key(record.depth3),
    )


def post_process(records: Sequence[TestCaseRecord]) -> List[TestCaseRecord]:
    """Sort by category path (ties keep input order) and renumber from 1."""
    ordered = sorted(records, key=_category_key)
    return [
        record.model_copy(update={"no": index})
        for index, record in enumerate(ordered, start=1)
    ]


def dedupe_by_no(records: Iterable[TestCaseRecord]) -> List[TestCaseRecord]:
    """Keep the first record for each model-assigned ``no``."""
    seen = set()
    out: List[TestCaseRecord] = []
    for record in records:
        if record.no in seen:
            continue
        seen.add(record.no)
        out.append(record)
    return out
