"""Test-case record types.

RawTestCase is the loosely-typed shape scavenged from model output (keys in
any casing, any field possibly missing). TestCaseRecord is the canonical
record every downstream consumer sees.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

# Canonical field -> accepted spellings, looked up case-insensitively
FIELD_ALIASES: Dict[str, Sequence[str]] = {
    "no": ("no",),
    "title": ("title",),
    "depth1": ("depth1",),
    "depth2": ("depth2",),
    "depth3": ("depth3",),
    "precondition": ("precondition",),
    "steps": ("steps",),
    "expected_result": ("expectedResult", "expected_result"),
}

TEXT_FIELDS = (
    "title", "depth1", "depth2", "depth3", "precondition", "steps", "expected_result",
)


def get_field_ci(obj: Mapping[str, Any], keys: Sequence[str]) -> Any:
    """Look up the first of ``keys`` present in ``obj``, ignoring key case.

    Exact matches win over case-insensitive ones. Returns None when absent.
    """
    if not isinstance(obj, Mapping):
        return None
    for key in keys:
        if key in obj:
            return obj[key]
    lowered = {str(k).lower(): k for k in obj.keys()}
    for key in keys:
        found = lowered.get(key.lower())
        if found is not None:
            return obj[found]
    return None


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return "\n".join(_to_text(v) for v in value)
    return str(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return 0


@dataclass
class RawTestCase:
    """One test case as the model emitted it, fields optional."""

    no: Optional[int] = None
    title: Optional[str] = None
    depth1: Optional[str] = None
    depth2: Optional[str] = None
    depth3: Optional[str] = None
    precondition: Optional[str] = None
    steps: Optional[str] = None
    expected_result: Optional[str] = None

    @classmethod
    def from_mapping(cls, obj: Mapping[str, Any]) -> "RawTestCase":
        values: Dict[str, Any] = {}
        for name, aliases in FIELD_ALIASES.items():
            value = get_field_ci(obj, aliases)
            if value is None:
                continue
            values[name] = _to_int(value) if name == "no" else _to_text(value)
        return cls(**values)

    def to_record(self) -> "TestCaseRecord":
        return TestCaseRecord(
            no=self.no or 0,
            **{name: getattr(self, name) or "" for name in TEXT_FIELDS},
        )


class TestCaseRecord(BaseModel):
    """Canonical test case.

    ``id`` is assigned once at creation. ``no`` is the sequence number: a
    hint while phases run, authoritative only after post_process.
    """

    __test__ = False

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), frozen=True)
    no: int = 0
    title: str = ""
    depth1: str = ""
    depth2: str = ""
    depth3: str = ""
    precondition: str = ""
    steps: str = ""
    expected_result: str = ""


@dataclass
class PhaseResult:
    """Output of one phase (or one model call), merged then discarded."""

    records: List[TestCaseRecord] = field(default_factory=list)
    questions: List[str] = field(default_factory=list)
    summary: str = ""
    has_more: Optional[bool] = None
    recovered: bool = False


class GenerationResult(BaseModel):
    """Final record set returned to the caller."""

    test_cases: List[TestCaseRecord] = Field(default_factory=list)
    questions: List[str] = Field(default_factory=list)
    summary: str = ""
