"""JSON parsing for model responses, with recovery for broken output.

Model responses are untrusted: they may be wrapped in markdown fences,
truncated mid-object, or several JSON fragments glued together.

parse_model_response() tries a direct parse first and falls back to
recover_test_cases(), which runs two independent strategies:

  A. Brace balancing — scan for ``{``, track depth while honoring string
     literals and escapes, and json-parse each balanced candidate.
  B. Field regex — only when A found nothing: match flat
     ``{"no": N ... }`` chunks and pull each field out with a regex.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Upper bound on candidate objects examined by strategy A
MAX_SCAN_ITERATIONS = 10000

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_FLAT_OBJECT_RE = re.compile(r'\{\s*"no"\s*:\s*(\d+)[^}]*?\}', re.IGNORECASE | re.DOTALL)
_ESCAPE_RE = re.compile(r'\\(["\\nt])')
_ESCAPES = {'"': '"', "\\": "\\", "n": "\n", "t": "\t"}

RECOVERED_FIELDS = (
    "title", "depth1", "depth2", "depth3", "precondition", "steps", "expectedResult",
)


@dataclass
class ParsedResponse:
    """Raw test-case dicts plus the side fields of one model response."""

    test_cases: List[Dict[str, Any]] = field(default_factory=list)
    questions: List[str] = field(default_factory=list)
    summary: str = ""
    has_more: Optional[bool] = None
    recovered: bool = False


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _case_list(obj: Dict[str, Any]) -> Optional[list]:
    for key in ("testCases", "testcases"):
        if isinstance(obj.get(key), list):
            return obj[key]
    return None


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def _absorb_wrapper(obj: Dict[str, Any], result: ParsedResponse) -> None:
    """Copy the side fields of a ``{"testCases": [...], ...}`` wrapper."""
    if obj.get("questions"):
        result.questions = _string_list(obj["questions"])
    if obj.get("summary"):
        result.summary = str(obj["summary"])
    if isinstance(obj.get("hasMore"), bool):
        result.has_more = obj["hasMore"]


# ---------------------------------------------------------------------------
# Strategy A: brace balancing
# ---------------------------------------------------------------------------


def _balanced_end(text: str, start: int) -> int:
    """Index of the ``}`` closing the object opened at ``start``, or -1."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


def _recover_by_braces(text: str, result: ParsedResponse) -> None:
    pos = 0
    iterations = MAX_SCAN_ITERATIONS
    while iterations > 0:
        iterations -= 1
        start = text.find("{", pos)
        if start == -1:
            break
        end = _balanced_end(text, start)
        if end == -1:
            pos = start + 1
            continue
        pos = end + 1

        try:
            obj = json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            continue
        if not isinstance(obj, dict):
            continue

        if _is_number(obj.get("no")) and (obj.get("title") or obj.get("steps")):
            result.test_cases.append(obj)
            continue

        cases = _case_list(obj)
        if cases is not None:
            result.test_cases.extend(
                tc for tc in cases if isinstance(tc, dict) and tc.get("no") is not None
            )
            _absorb_wrapper(obj, result)


# ---------------------------------------------------------------------------
# Strategy B: flat field regex
# ---------------------------------------------------------------------------


def _unescape(value: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _ESCAPES[m.group(1)], value)


def _regex_field(chunk: str, key: str) -> str:
    pattern = re.compile(
        r'"' + re.escape(key) + r'"\s*:\s*"((?:[^"\\]|\\.)*?)"',
        re.IGNORECASE | re.DOTALL,
    )
    match = pattern.search(chunk)
    return _unescape(match.group(1)) if match else ""


def _recover_by_regex(text: str, result: ParsedResponse) -> None:
    for match in _FLAT_OBJECT_RE.finditer(text):
        chunk = match.group(0)
        fields = {key: _regex_field(chunk, key) for key in RECOVERED_FIELDS}
        if not (fields["title"] or fields["steps"]):
            continue
        result.test_cases.append({"no": int(match.group(1)), **fields})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def recover_test_cases(text: str) -> ParsedResponse:
    """Extract test-case dicts from malformed or truncated model output.

    Never raises; returns an empty result when nothing is recoverable.
    Records keep discovery order.
    """
    result = ParsedResponse(recovered=True)
    clean = strip_code_fences(text)

    _recover_by_braces(clean, result)
    if not result.test_cases:
        _recover_by_regex(clean, result)
        if result.test_cases:
            logger.info("recover_test_cases: regex fallback recovered %d cases", len(result.test_cases))
    else:
        logger.info("recover_test_cases: brace scan recovered %d cases", len(result.test_cases))
    return result


def parse_model_response(text: str) -> ParsedResponse:
    """Parse a model response directly, falling back to recovery."""
    clean = strip_code_fences(text).strip()
    try:
        data = json.loads(clean)
    except json.JSONDecodeError:
        data = None

    if isinstance(data, list):
        return ParsedResponse(test_cases=[tc for tc in data if isinstance(tc, dict)])
    if isinstance(data, dict):
        cases = _case_list(data)
        if cases is not None or not data:
            result = ParsedResponse(
                test_cases=[tc for tc in (cases or []) if isinstance(tc, dict)],
            )
            _absorb_wrapper(data, result)
            return result

    logger.warning("parse_model_response: direct JSON parse failed, attempting recovery")
    return recover_test_cases(text)
