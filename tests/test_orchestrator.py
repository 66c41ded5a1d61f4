"""Tests for design_qa.generation.orchestrator."""

import json
import re

import pytest

from design_qa.bundle import ContentItem
from design_qa.cancellation import CancelToken, OperationCancelled
from design_qa.generation.llm_utils import GenerationFailedError, ModelConfig
from design_qa.generation.orchestrator import GeneratorConfig, TestCaseGenerator, to_phase_result
from design_qa.generation.prompts import PHASES, REFINE_STYLE_NOTE, PhaseConfig
from design_qa.generation.records import TestCaseRecord

SCENARIO_A = (
    '{"testCases":[{"no":1,"title":"로그인 실패","steps":"1. ID 입력\\n2. 잘못된 PW 입력\\n'
    '3. 로그인 클릭","expectedResult":"에러 메시지 노출된다"}]}'
)


def payload(*cases, questions=(), summary="", has_more=None):
    data = {"testCases": list(cases), "questions": list(questions), "summary": summary}
    if has_more is not None:
        data["hasMore"] = has_more
    return json.dumps(data, ensure_ascii=False)


def case(no, title, d1="화면", d2="", steps="1. 진입", result="노출된다"):
    return {"no": no, "title": title, "depth1": d1, "depth2": d2, "steps": steps, "expectedResult": result}


class RoutedModel:
    """ModelClient that answers by command kind and phase name.

    ``routes`` maps a key to a list of outcomes consumed in order; the last
    outcome repeats. Keys: phase name for drafts, ``"<phase>:expand"``,
    ``"<phase>:verify"``, ``"refine"``.
    """

    def __init__(self, routes):
        self.routes = {k: list(v) for k, v in routes.items()}
        self.calls = []

    @staticmethod
    def route_of(prompt):
        if "--- UPDATE COMMAND ---" in prompt:
            return "refine"
        phase = re.search(r"CURRENT PHASE: (.+?)(?: \((?:additional page \d+|verification)\))?\n", prompt).group(1)
        if "--- EXPANSION COMMAND ---" in prompt:
            return f"{phase}:expand"
        if "--- VERIFY COMMAND ---" in prompt:
            return f"{phase}:verify"
        return phase

    async def generate(self, items, prompt, system_instruction, schema=None):
        key = self.route_of(prompt)
        self.calls.append({"key": key, "prompt": prompt, "system": system_instruction, "schema": schema})
        outcomes = self.routes.get(key, [payload()])
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def keys(self):
        return [c["key"] for c in self.calls]


@pytest.fixture
def items():
    return [ContentItem.text("login.md", "# 로그인 화면")]


@pytest.fixture
def model_config():
    return ModelConfig(api_key="test", max_attempts=2, retry_delay=0)


def single_phase(**kwargs):
    return GeneratorConfig(phases=[PhaseConfig(name="P", focus="focus", **kwargs)])


# ---------------------------------------------------------------------------
# Tests: end-to-end phase pipeline
# ---------------------------------------------------------------------------


class TestGenerate:

    @pytest.mark.asyncio
    async def test_scenario_a_single_record(self, items, model_config):
        model = RoutedModel({"P": [SCENARIO_A]})
        generator = TestCaseGenerator(model, single_phase(), model_config)

        result = await generator.generate(items)

        assert len(result.test_cases) == 1
        record = result.test_cases[0]
        assert record.no == 1
        lines = record.steps.split("\n")
        assert len(lines) == 3
        assert all(re.match(r"^\d+\.", line) for line in lines)
        assert result.summary == "Generated 1 test cases across all phases."

    @pytest.mark.asyncio
    async def test_all_phases_run_in_order(self, items, model_config):
        model = RoutedModel({p.name: [payload(case(1, p.name))] for p in PHASES})
        generator = TestCaseGenerator(model, model_config=model_config)

        result = await generator.generate(items)

        assert model.keys() == [p.name for p in PHASES]
        assert [r.no for r in result.test_cases] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_failed_and_empty_phases_are_skipped(self, items, model_config):
        p1, p2, p3, p4, p5 = (p.name for p in PHASES)
        model = RoutedModel({
            p1: [payload(case(1, "a"), case(2, "b"), questions=["Q1"], summary="s1")],
            p2: [RuntimeError("quota")],
            p3: ["not json at all"],
            p4: [payload(case(3, "c"), questions=["Q1", " Q2 "], summary="s4")],
            p5: [payload()],
        })
        generator = TestCaseGenerator(model, model_config=model_config)

        result = await generator.generate(items)

        assert [r.title for r in result.test_cases] == ["a", "b", "c"]
        assert result.questions == ["Q1", "Q2"]
        assert result.summary == "[1] s1 [4] s4"
        # phase 2 retried once, then skipped
        assert model.keys().count(p2) == 2

    @pytest.mark.asyncio
    async def test_start_number_hint(self, items, model_config):
        p1, p2 = PHASES[0].name, PHASES[1].name
        model = RoutedModel({p1: [payload(case(1, "a"), case(2, "b"))]})
        generator = TestCaseGenerator(model, GeneratorConfig(phases=PHASES[:2]), model_config)

        await generator.generate(items)

        assert "starting from No.1" in model.calls[0]["prompt"]
        assert "starting from No.3" in model.calls[1]["prompt"]
        assert model.calls[1]["key"] == p2

    @pytest.mark.asyncio
    async def test_final_order_and_numbering(self, items, model_config):
        model = RoutedModel({"P": [payload(
            case(1, "x", d1="회원가입"),
            case(2, "y", d1="로그인", d2="실패"),
            case(3, "z", d1="로그인", d2="성공"),
        )]})
        generator = TestCaseGenerator(model, single_phase(), model_config)

        result = await generator.generate(items)

        assert [r.title for r in result.test_cases] == ["z", "y", "x"]
        assert [r.no for r in result.test_cases] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_style_note_in_system_instruction(self, items, model_config):
        model = RoutedModel({"P": [SCENARIO_A]})
        await TestCaseGenerator(model, single_phase(), model_config).generate(items, style_note="버튼명은 대괄호")
        assert "버튼명은 대괄호" in model.calls[0]["system"]
        assert "{{USER_FEEDBACK_DATA}}" not in model.calls[0]["system"]

    @pytest.mark.asyncio
    async def test_default_style_note(self, items, model_config):
        model = RoutedModel({"P": [SCENARIO_A]})
        await TestCaseGenerator(model, single_phase(), model_config).generate(items)
        assert "### [User Feedback]\n(None)" in model.calls[0]["system"]

    @pytest.mark.asyncio
    async def test_progress_messages(self, items, model_config):
        messages = []
        model = RoutedModel({})
        generator = TestCaseGenerator(model, GeneratorConfig(phases=PHASES[:2]), model_config)

        await generator.generate(items, on_progress=messages.append)

        assert messages == [f"Phase 1/2: {PHASES[0].name}", f"Phase 2/2: {PHASES[1].name}"]

    @pytest.mark.asyncio
    async def test_dedupe_by_no(self, items, model_config):
        model = RoutedModel({"P": [payload(case(1, "a"), case(1, "dup"), case(2, "b"))]})
        config = GeneratorConfig(phases=[PhaseConfig("P", "f")], dedupe_by_no=True)

        result = await TestCaseGenerator(model, config, model_config).generate(items)

        assert [r.title for r in result.test_cases] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, items, model_config):
        model = RoutedModel({PHASES[0].name: [OperationCancelled()]})
        with pytest.raises(OperationCancelled):
            await TestCaseGenerator(model, model_config=model_config).generate(items)
        assert len(model.calls) == 1

    @pytest.mark.asyncio
    async def test_cancelled_token_stops_before_first_phase(self, items, model_config):
        token = CancelToken()
        token.cancel()
        model = RoutedModel({})
        with pytest.raises(OperationCancelled):
            await TestCaseGenerator(model, model_config=model_config).generate(items, cancel_token=token)
        assert model.calls == []


# ---------------------------------------------------------------------------
# Tests: expansion and verification sub-steps
# ---------------------------------------------------------------------------


class TestExpansion:

    @pytest.mark.asyncio
    async def test_page_cap_is_authoritative(self, items, model_config):
        model = RoutedModel({
            "P": [payload(case(1, "a"))],
            "P:expand": [payload(case(2, "more"), has_more=True)],
        })
        config = GeneratorConfig(phases=[PhaseConfig("P", "f", expansion_pages=10)], expansion_page_cap=2)

        result = await TestCaseGenerator(model, config, model_config).generate(items)

        assert model.keys() == ["P", "P:expand", "P:expand"]
        assert len(result.test_cases) == 3

    @pytest.mark.asyncio
    async def test_stops_when_model_reports_no_more(self, items, model_config):
        model = RoutedModel({
            "P": [payload(case(1, "a"))],
            "P:expand": [payload(case(2, "b"), has_more=False)],
        })
        config = GeneratorConfig(phases=[PhaseConfig("P", "f", expansion_pages=3)])

        await TestCaseGenerator(model, config, model_config).generate(items)

        assert model.keys() == ["P", "P:expand"]
        assert model.calls[1]["schema"].properties["hasMore"] is not None
        assert "starting from No.2" in model.calls[1]["prompt"]

    @pytest.mark.asyncio
    async def test_stops_on_empty_page(self, items, model_config):
        model = RoutedModel({
            "P": [payload(case(1, "a"))],
            "P:expand": [payload(has_more=True)],
        })
        config = GeneratorConfig(phases=[PhaseConfig("P", "f", expansion_pages=3)])

        result = await TestCaseGenerator(model, config, model_config).generate(items)

        assert model.keys() == ["P", "P:expand"]
        assert len(result.test_cases) == 1

    @pytest.mark.asyncio
    async def test_failed_expansion_keeps_draft(self, items, model_config):
        model = RoutedModel({
            "P": [payload(case(1, "draft"))],
            "P:expand": [RuntimeError("503")],
        })
        config = GeneratorConfig(phases=[PhaseConfig("P", "f", expansion_pages=3)])

        result = await TestCaseGenerator(model, config, model_config).generate(items)

        assert [r.title for r in result.test_cases] == ["draft"]
        # one page, retried once, then the loop stops
        assert model.keys() == ["P", "P:expand", "P:expand"]

    @pytest.mark.asyncio
    async def test_failed_later_page_keeps_earlier_pages(self, items, model_config):
        model = RoutedModel({
            "P": [payload(case(1, "draft"))],
            "P:expand": [payload(case(2, "page-1"), has_more=True), RuntimeError("503")],
        })
        config = GeneratorConfig(phases=[PhaseConfig("P", "f", expansion_pages=3)])

        result = await TestCaseGenerator(model, config, model_config).generate(items)

        assert [r.title for r in result.test_cases] == ["draft", "page-1"]

    @pytest.mark.asyncio
    async def test_cancellation_during_expansion_propagates(self, items, model_config):
        model = RoutedModel({
            "P": [payload(case(1, "draft"))],
            "P:expand": [OperationCancelled()],
        })
        config = GeneratorConfig(phases=[PhaseConfig("P", "f", expansion_pages=3)])

        with pytest.raises(OperationCancelled):
            await TestCaseGenerator(model, config, model_config).generate(items)
        assert model.keys() == ["P", "P:expand"]


class TestVerify:

    @pytest.mark.asyncio
    async def test_keeps_verified_subset(self, items, model_config):
        model = RoutedModel({
            "P": [payload(case(1, "real"), case(2, "imagined"))],
            "P:verify": [payload(case(1, "real"))],
        })
        config = GeneratorConfig(phases=[PhaseConfig("P", "f", verify=True)])

        result = await TestCaseGenerator(model, config, model_config).generate(items)

        assert [r.title for r in result.test_cases] == ["real"]
        assert '"imagined"' in model.calls[1]["prompt"]

    @pytest.mark.asyncio
    async def test_empty_verification_keeps_draft(self, items, model_config):
        model = RoutedModel({
            "P": [payload(case(1, "a"), case(2, "b"))],
            "P:verify": [payload()],
        })
        config = GeneratorConfig(phases=[PhaseConfig("P", "f", verify=True)])

        result = await TestCaseGenerator(model, config, model_config).generate(items)

        assert [r.title for r in result.test_cases] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_failed_verification_keeps_draft(self, items, model_config):
        model = RoutedModel({
            "P": [payload(case(1, "a"))],
            "P:verify": [RuntimeError("boom")],
        })
        config = GeneratorConfig(phases=[PhaseConfig("P", "f", verify=True)])

        result = await TestCaseGenerator(model, config, model_config).generate(items)

        assert [r.title for r in result.test_cases] == ["a"]

    @pytest.mark.asyncio
    async def test_skipped_when_draft_empty(self, items, model_config):
        model = RoutedModel({"P": [payload()]})
        config = GeneratorConfig(phases=[PhaseConfig("P", "f", verify=True, expansion_pages=2)])

        await TestCaseGenerator(model, config, model_config).generate(items)

        assert model.keys() == ["P"]


# ---------------------------------------------------------------------------
# Tests: refine_with_answers
# ---------------------------------------------------------------------------


class TestRefine:

    @pytest.mark.asyncio
    async def test_replaces_current_set(self, items, model_config):
        current = [TestCaseRecord(no=1, title="old-1"), TestCaseRecord(no=2, title="old-2")]
        model = RoutedModel({"refine": [payload(
            case(5, "new-b", d1="B", steps="1. 진입. 2. 클릭."),
            case(9, "new-a", d1="A"),
            summary="updated",
        )]})
        generator = TestCaseGenerator(model, model_config=model_config)

        result = await generator.refine_with_answers(
            items, current, [("최대 길이는?", "20자"), ("필수 여부?", "필수")],
        )

        assert [r.title for r in result.test_cases] == ["new-a", "new-b"]
        assert [r.no for r in result.test_cases] == [1, 2]
        assert result.test_cases[1].steps == "1. 진입\n2. 클릭"
        assert result.summary == "updated"
        assert len(model.calls) == 1

        prompt = model.calls[0]["prompt"]
        assert "Q1: 최대 길이는?\nA1: 20자" in prompt
        assert "Q2: 필수 여부?\nA2: 필수" in prompt
        assert "old-1" in prompt
        assert REFINE_STYLE_NOTE in model.calls[0]["system"]

    @pytest.mark.asyncio
    async def test_failure_propagates(self, items, model_config):
        model = RoutedModel({"refine": [RuntimeError("down")]})
        with pytest.raises(GenerationFailedError):
            await TestCaseGenerator(model, model_config=model_config).refine_with_answers(
                items, [], [("q", "a")],
            )


class TestToPhaseResult:

    def test_maps_fields(self):
        result = to_phase_result(
            '{"testCases":[{"No":2,"Title":"t","expectedResult":"r"}],"hasMore":true}'
        )
        assert result.records[0].no == 2
        assert result.records[0].title == "t"
        assert result.records[0].expected_result == "r"
        assert result.has_more is True
        assert result.recovered is False

    def test_flags_truncated_response(self):
        result = to_phase_result(SCENARIO_A[:-2] + ',{"no":2,"title":"cut')
        assert result.recovered is True
        assert [r.title for r in result.records] == ["로그인 실패"]

    @pytest.mark.asyncio
    async def test_salvaged_response_is_logged(self, items, model_config, caplog):
        model = RoutedModel({"P": [SCENARIO_A[:-2] + ',{"no":2,"title":"cut']})
        generator = TestCaseGenerator(model, single_phase(), model_config)

        with caplog.at_level("WARNING", logger="design_qa.generation.orchestrator"):
            result = await generator.generate(items)

        assert len(result.test_cases) == 1
        assert "salvaged 1 cases" in caplog.text
