"""Phased test-case generation.

TestCaseGenerator.generate() runs every configured phase in order against
the same content bundle:

    DRAFT -> [EXPANSION rounds] -> [VERIFY] -> NORMALIZE -> MERGE

A phase that fails or yields nothing is logged and skipped; the run only
fails when the caller cancels. After the last phase the accumulated
records are sorted and renumbered by post_process().

refine_with_answers() is a single full regeneration that replaces the
current set using the user's Q&A answers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from .. import settings
from ..bundle import ContentItem
from ..cancellation import CancelToken, OperationCancelled
from .json_recovery import parse_model_response
from .llm_utils import GenerationFailedError, ModelClient, ModelConfig, invoke_model
from .normalize import dedupe_by_no, normalize_records, post_process
from .prompts import (
    PHASES,
    REFINE_STYLE_NOTE,
    PhaseConfig,
    build_expansion_prompt,
    build_phase_prompt,
    build_refine_prompt,
    build_system_instruction,
    build_verify_prompt,
)
from .records import GenerationResult, PhaseResult, RawTestCase, TestCaseRecord

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


@dataclass
class GeneratorConfig:
    """Phase catalogue and per-run policies.

    ``expansion_page_cap`` bounds every phase's expansion loop regardless
    of what the phase asks for or what the model reports via ``hasMore``.
    """

    phases: Sequence[PhaseConfig] = field(default_factory=lambda: list(PHASES))
    expansion_page_cap: int = settings.EXPANSION_PAGE_CAP
    dedupe_by_no: bool = False


def to_phase_result(text: str) -> PhaseResult:
    """Parse one model response into canonical (not yet normalized) records."""
    parsed = parse_model_response(text)
    records = [RawTestCase.from_mapping(tc).to_record() for tc in parsed.test_cases]
    return PhaseResult(
        records=records,
        questions=list(parsed.questions),
        summary=parsed.summary,
        has_more=parsed.has_more,
        recovered=parsed.recovered,
    )


def _merge_questions(target: List[str], new: Sequence[str]) -> None:
    for question in new:
        question = question.strip()
        if question and question not in target:
            target.append(question)


class TestCaseGenerator:
    """Drives the phase pipeline against one model client.

    Args:
        model: Any ModelClient (GeminiModelClient in production).
        config: Phase catalogue and policies.
        model_config: Retry bounds for each model call.
    """

    __test__ = False

    def __init__(
        self,
        model: ModelClient,
        config: Optional[GeneratorConfig] = None,
        model_config: Optional[ModelConfig] = None,
    ):
        self.model = model
        self.config = config or GeneratorConfig()
        self.model_config = model_config or ModelConfig()

    async def _call(
        self,
        items: Sequence[ContentItem],
        prompt: str,
        system_instruction: str,
        cancel_token: Optional[CancelToken],
        caller: str,
        with_has_more: bool = False,
    ) -> PhaseResult:
        text = await invoke_model(
            self.model,
            items,
            prompt,
            system_instruction,
            with_has_more=with_has_more,
            max_attempts=self.model_config.max_attempts,
            retry_delay=self.model_config.retry_delay,
            cancel_token=cancel_token,
            caller=caller,
        )
        result = to_phase_result(text)
        if result.recovered:
            logger.warning(
                "[%s] response was not valid JSON, salvaged %d cases", caller, len(result.records),
            )
        return result

    # ------------------------------------------------------------------
    # Phase sub-steps
    # ------------------------------------------------------------------

    async def _expand(
        self,
        phase: PhaseConfig,
        items: Sequence[ContentItem],
        system_instruction: str,
        draft: PhaseResult,
        start_no: int,
        cancel_token: Optional[CancelToken],
    ) -> None:
        """Append extra pages to ``draft`` in place, at most ``pages`` rounds."""
        pages = min(phase.expansion_pages, self.config.expansion_page_cap)
        for page in range(1, pages + 1):
            next_no = max([start_no - 1] + [r.no for r in draft.records]) + 1
            prompt = build_expansion_prompt(phase, draft.records, next_no, page)
            try:
                extra = await self._call(
                    items, prompt, system_instruction, cancel_token,
                    caller=f"{phase.name} expansion {page}", with_has_more=True,
                )
            except OperationCancelled:
                raise
            except GenerationFailedError as e:
                logger.warning(
                    "[%s] expansion page %d failed, keeping %d cases: %s",
                    phase.name, page, len(draft.records), e,
                )
                break
            logger.info(
                "[%s] expansion page %d: %d cases (hasMore=%s)",
                phase.name, page, len(extra.records), extra.has_more,
            )
            if not extra.records:
                break
            draft.records.extend(extra.records)
            _merge_questions(draft.questions, extra.questions)
            if extra.has_more is False:
                break

    async def _verify(
        self,
        phase: PhaseConfig,
        items: Sequence[ContentItem],
        system_instruction: str,
        draft: PhaseResult,
        cancel_token: Optional[CancelToken],
    ) -> None:
        """Replace the draft's records with the cross-checked subset.

        An empty or failed verification keeps the draft.
        """
        prompt = build_verify_prompt(phase, draft.records)
        try:
            checked = await self._call(
                items, prompt, system_instruction, cancel_token,
                caller=f"{phase.name} verify",
            )
        except OperationCancelled:
            raise
        except GenerationFailedError as e:
            logger.warning("[%s] verification failed, keeping draft: %s", phase.name, e)
            return
        if not checked.records:
            logger.warning("[%s] verification returned no cases, keeping draft", phase.name)
            return
        logger.info(
            "[%s] verification kept %d of %d cases",
            phase.name, len(checked.records), len(draft.records),
        )
        draft.records = checked.records

    async def run_phase(
        self,
        phase: PhaseConfig,
        items: Sequence[ContentItem],
        system_instruction: str,
        start_no: int,
        cancel_token: Optional[CancelToken] = None,
    ) -> PhaseResult:
        """Run one phase and return its normalized records."""
        result = await self._call(
            items, build_phase_prompt(phase, start_no), system_instruction, cancel_token,
            caller=phase.name,
        )
        if not result.records:
            return result

        if phase.expansion_pages > 0:
            await self._expand(phase, items, system_instruction, result, start_no, cancel_token)
        if phase.verify:
            await self._verify(phase, items, system_instruction, result, cancel_token)

        records = normalize_records(result.records)
        if self.config.dedupe_by_no:
            records = dedupe_by_no(records)
        result.records = records
        return result

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def generate(
        self,
        content_items: Sequence[ContentItem],
        style_note: str = "",
        cancel_token: Optional[CancelToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        """Run all phases and return the post-processed record set.

        Raises:
            OperationCancelled: the token fired. Nothing else aborts the run.
        """
        system_instruction = build_system_instruction(style_note)
        records: List[TestCaseRecord] = []
        questions: List[str] = []
        summary = ""
        last_no = 0
        phases = list(self.config.phases)

        for index, phase in enumerate(phases, start=1):
            if cancel_token:
                cancel_token.raise_if_cancelled()
            if on_progress:
                on_progress(f"Phase {index}/{len(phases)}: {phase.name}")
            logger.info("Starting phase %d/%d: %s", index, len(phases), phase.name)

            try:
                result = await self.run_phase(
                    phase, content_items, system_instruction, last_no + 1, cancel_token,
                )
            except OperationCancelled:
                raise
            except Exception as e:
                logger.error("[%s] phase failed, continuing: %s", phase.name, e)
                continue

            if not result.records:
                logger.warning("[%s] produced no test cases, skipping", phase.name)
                continue

            records.extend(result.records)
            last_no = max(last_no, max(r.no for r in result.records))
            _merge_questions(questions, result.questions)
            if result.summary:
                summary += f" [{index}] {result.summary}"
            logger.info("[%s] added %d cases (total %d)", phase.name, len(result.records), len(records))

        final = post_process(records)
        return GenerationResult(
            test_cases=final,
            questions=questions,
            summary=summary.strip() or f"Generated {len(final)} test cases across all phases.",
        )

    async def refine_with_answers(
        self,
        content_items: Sequence[ContentItem],
        current_records: Sequence[TestCaseRecord],
        qa_pairs: Sequence[Tuple[str, str]],
        style_note: str = "",
        cancel_token: Optional[CancelToken] = None,
    ) -> GenerationResult:
        """Regenerate the complete set honoring the Q&A; replaces, never merges.

        Raises:
            GenerationFailedError: the model call failed after all retries.
        """
        system_instruction = build_system_instruction(style_note, default=REFINE_STYLE_NOTE)
        prompt = build_refine_prompt(current_records, qa_pairs)
        result = await self._call(
            content_items, prompt, system_instruction, cancel_token, caller="Refine",
        )
        final = post_process(normalize_records(result.records))
        logger.info("Refine produced %d cases (previously %d)", len(final), len(current_records))
        return GenerationResult(
            test_cases=final,
            questions=result.questions,
            summary=result.summary or f"Regenerated {len(final)} test cases.",
        )
