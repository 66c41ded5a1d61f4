"""Prompt templates for test-case generation.

SYSTEM_PROMPT_TEMPLATE: role, writing rules and examples shared by every call.
    ``{{USER_FEEDBACK_DATA}}`` is replaced with the caller's style note.
PHASES: the default ordered analysis passes, each with its own focus.
build_phase_prompt / build_expansion_prompt / build_verify_prompt /
build_refine_prompt: per-call command blocks appended after the content.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple

from .records import TestCaseRecord

FEEDBACK_PLACEHOLDER = "{{USER_FEEDBACK_DATA}}"

SYSTEM_PROMPT_TEMPLATE = """
### [Role]
You are a **Lead QA Engineer** known for being meticulous and critical.
Your job is not only to confirm that features work, but to find **edge cases**,
**logic loopholes** and **visual combinations**.

### [Writing Rules for Reproducibility]

#### 1. PRECONDITIONS — numbered list of states
* Break the setup into specific states, one per line: "1. ...\\n2. ...".
* Never answer "None".
* Example:
  "1. 관리자 계정으로 로그인된 상태
   2. '환경설정 > 일반' 페이지 진입 상태"

#### 2. STEPS — navigation, data, trigger
* A stranger must be able to reproduce the test without asking questions.
* Step 1 navigates (e.g. "[메뉴 A > 하위 메뉴 B] 진입"), the middle steps enter
  concrete data, the last step triggers the action (e.g. "[저장] 버튼 클릭").
* Numbered list. End each step with a noun or an imperative. Never end with a period.

#### 3. VISUAL PERMUTATION
When several inputs interact (checkboxes, dropdowns), enumerate the combinations
as a truth table: A(O)+B(O), A(O)+B(X), ...

#### 4. ATOMICITY — one test case verifies exactly one thing
"and", "also", "simultaneously", "그리고", "또한", "동시에" are forbidden in the
expected result. Split such checks into separate test cases.

#### 5. NO IMAGINATION
Verify only what is visible on screen (toasts, UI changes). Never mention databases or logs.

### [Example]
{
  "no": 1,
  "title": "상품 등록 - 이미지O, 카테고리X 조합",
  "depth1": "상품관리",
  "depth2": "등록",
  "precondition": "1. 관리자 계정으로 로그인된 상태\\n2. 상품 등록 페이지 진입 상태",
  "steps": "1. [상품관리 > 등록] 메뉴 진입\\n2. 상품명에 '테스트' 입력\\n3. 카테고리 미선택\\n4. [저장] 버튼 클릭",
  "expectedResult": "'카테고리를 선택해주세요' 에러 메시지가 입력란 하단에 노출된다"
}

### [Language]
ALL OUTPUT VALUES MUST BE IN KOREAN (한국어).

### [Output Format]
Output ONLY one valid JSON object following the schema. No text before or after it.

### [User Feedback]
{{USER_FEEDBACK_DATA}}
"""

DEFAULT_STYLE_NOTE = "(None)"
REFINE_STYLE_NOTE = "Prioritize the information provided in the Q&A session."

_FORMAT_RULES = """CRITICAL RULES:
1. Preconditions: MUST be a numbered list describing STATE.
2. Steps: end with NOUNS (명사형) or IMPERATIVE. DO NOT end with a period(.).
3. Results: use PASSIVE VOICE (~된다).
4. Atomicity: one test case verifies exactly ONE thing.

Output ONLY valid JSON. Values MUST be in Korean."""


@dataclass(frozen=True)
class PhaseConfig:
    """One analysis pass.

    Args:
        name: Display name, also shown to the model.
        focus: Phase-specific instructions.
        expansion_pages: Extra "generate more" rounds after the draft (0 = off).
        verify: Run a cross-check call that drops unsupported draft records.
    """

    name: str
    focus: str
    expansion_pages: int = 0
    verify: bool = False


PHASES: Tuple[PhaseConfig, ...] = (
    PhaseConfig(
        name="1. UI/UX Inspection",
        focus=(
            "Focus strictly on visible UI elements.\n"
            "- Check labels, placeholders, icons, colors, fonts.\n"
            "- Verify alignment and layout consistency."
        ),
    ),
    PhaseConfig(
        name="2. Functional Logic (Happy Path)",
        focus=(
            "Focus on the main business logic and successful workflows.\n"
            "- Verify navigation links.\n"
            "- Verify successful form submissions.\n"
            "- Verify screen transitions."
        ),
    ),
    PhaseConfig(
        name="3. Input Validation (Negative Path)",
        focus=(
            "Focus on constraints and error handling.\n"
            "- Check max/min length, required fields, invalid formats.\n"
            "- Check boundary values for numbers and dates."
        ),
    ),
    PhaseConfig(
        name="4. State Dynamics & Arithmetic",
        focus=(
            "1. Counters: verify numbers increase (+1) / decrease (-1).\n"
            "2. Popups: [Confirm] executes the action, [Cancel] closes without action.\n"
            "3. Lists: verify 0 items, 1 item and many items."
        ),
    ),
    PhaseConfig(
        name="5. Context-Aware Edge Cases",
        focus=(
            "1. Transaction screens: network disconnect, refresh, back button mid-process.\n"
            "2. Static screens: layout stability on resize where applicable."
        ),
    ),
)


def build_system_instruction(style_note: str = "", default: str = DEFAULT_STYLE_NOTE) -> str:
    return SYSTEM_PROMPT_TEMPLATE.replace(FEEDBACK_PLACEHOLDER, style_note.strip() or default)


def build_phase_prompt(phase: PhaseConfig, start_no: int) -> str:
    return f"""--- COMMAND ---
CURRENT PHASE: {phase.name}

Generate test cases starting from No.{start_no}.

### STRATEGY: TRAVERSAL
Step 1. Move a virtual finger through the content.
- Images: scan top-left to bottom-right (Z pattern).
- Text: scan hierarchically: section title > subtitle > form input > action button.

Step 2. Stop at EVERY element the finger touches.
- Text label: visibility / typo.
- Input field: valid, empty, max length, special characters.
- List: one item, many items, empty.
- Date picker: past, future, start > end.

Step 3. Permute states for each element.
- Inputs: [Empty, Valid, Invalid type, Max length, Min length]
- Buttons: [Active, Disabled, Hover, Double click]
- Checkboxes/Radios: [Default, Selected, Unselected, Toggle]
- Popups: [Confirm, Cancel, Close(x), Outside click]

PHASE INSTRUCTION (Focus Area):
{phase.focus}

{_FORMAT_RULES}
--- END COMMAND ---
"""


def _summarize(records: Iterable[TestCaseRecord], full: bool = False) -> str:
    rows = []
    for r in records:
        row = {"no": r.no, "title": r.title, "steps": r.steps}
        if full:
            row.update({
                "depth1": r.depth1, "depth2": r.depth2, "depth3": r.depth3,
                "precondition": r.precondition, "expectedResult": r.expected_result,
            })
        rows.append(row)
    return json.dumps(rows, ensure_ascii=False)


def build_expansion_prompt(
    phase: PhaseConfig,
    existing: Sequence[TestCaseRecord],
    start_no: int,
    page: int,
) -> str:
    return f"""--- EXPANSION COMMAND ---
CURRENT PHASE: {phase.name} (additional page {page})

Test cases already generated for this phase (do NOT repeat them):
{_summarize(existing)}

Generate ADDITIONAL test cases for the same focus area that are not covered yet,
starting from No.{start_no}. Set "hasMore" to true only if meaningful cases still remain
after this page; return an empty "testCases" array if nothing is left.

PHASE INSTRUCTION (Focus Area):
{phase.focus}

{_FORMAT_RULES}
--- END COMMAND ---
"""


def build_verify_prompt(phase: PhaseConfig, draft: Sequence[TestCaseRecord]) -> str:
    return f"""--- VERIFY COMMAND ---
CURRENT PHASE: {phase.name} (verification)

Draft test cases:
{_summarize(draft, full=True)}

Cross-check every draft test case against the provided content.
- Keep a test case only if the screen or document actually supports it.
- Remove cases that rely on elements, messages or rules not present in the content.
- You may correct wording to follow the rules; keep "no" values unchanged.
Return the kept test cases in "testCases".

{_FORMAT_RULES}
--- END COMMAND ---
"""


def format_qa_pairs(qa_pairs: Sequence[Tuple[str, str]]) -> str:
    return "\n\n".join(
        f"Q{i}: {question}\nA{i}: {answer}"
        for i, (question, answer) in enumerate(qa_pairs, start=1)
    )


def build_refine_prompt(
    current: Sequence[TestCaseRecord],
    qa_pairs: Sequence[Tuple[str, str]],
) -> str:
    return f"""--- UPDATE COMMAND ---
User Q&A Session:
{format_qa_pairs(qa_pairs)}

Current Test Cases (Reference):
{_summarize(current)}

Task:
Re-generate the COMPLETE list of test cases, starting from No.1.
Apply everything answered in the Q&A session.
Keep the visual permutation rule and the atomicity rule (one result per test case).

{_FORMAT_RULES}
--- END COMMAND ---
"""
