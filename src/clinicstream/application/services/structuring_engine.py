"""
Clinical structuring engine.

Turns a finalized consultation transcript into an anamnesis plus typed
suggestions. Each call runs a bounded state machine:

    BUILDING_PROMPT -> AWAITING_MODEL -> VALIDATING -> SUCCESS
                                      \\-> RETRYING(n) -> AWAITING_MODEL
                                      \\-> FAILED

Model output is only returned after it validates against the output schema;
a failed validation is fed back into the next attempt's prompt.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Type, Union

from pydantic import ValidationError

from ...adapters.external.prompt_registry import PROMPT_VERSIONS, PromptScenario
from ...core.config import StructuringSettings
from ...core.exceptions import LanguageModelError
from ...domain.enums.consultation import SuggestionKind
from ...domain.errors import (
    DomainError,
    EmptyInputError,
    MissingCredentialsError,
    ModelTimeoutError,
    ModelUnavailableError,
    SchemaValidationFailedError,
)
from ...observability.metrics import record_structuring_outcome
from ..dto.structuring_dto import (
    AnamnesisOutput,
    StructuredOutput,
    StructuringContext,
    StructuringResult,
    Suggestion,
    TokenUsage,
    schema_hint,
)
from ..ports.repositories.token_usage_sink import TokenUsageSink
from ..ports.services.language_model import LanguageModel, ModelResponse

logger = logging.getLogger(__name__)


class StructuringPhase(str, Enum):
    BUILDING_PROMPT = "BUILDING_PROMPT"
    AWAITING_MODEL = "AWAITING_MODEL"
    VALIDATING = "VALIDATING"
    RETRYING = "RETRYING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class FailureKind(str, Enum):
    VALIDATION = "VALIDATION"
    MODEL_TIMEOUT = "MODEL_TIMEOUT"
    MODEL_ERROR = "MODEL_ERROR"


_PHASE_TRANSITIONS: Dict[StructuringPhase, FrozenSet[StructuringPhase]] = {
    StructuringPhase.BUILDING_PROMPT: frozenset({StructuringPhase.AWAITING_MODEL}),
    StructuringPhase.AWAITING_MODEL: frozenset(
        {StructuringPhase.VALIDATING, StructuringPhase.RETRYING, StructuringPhase.FAILED}
    ),
    StructuringPhase.VALIDATING: frozenset(
        {StructuringPhase.SUCCESS, StructuringPhase.RETRYING, StructuringPhase.FAILED}
    ),
    StructuringPhase.RETRYING: frozenset({StructuringPhase.AWAITING_MODEL}),
    StructuringPhase.SUCCESS: frozenset(),
    StructuringPhase.FAILED: frozenset(),
}


class ModelOutputInvalid(ValueError):
    """Model output is not valid JSON or does not match the schema."""


@dataclass
class AttemptFailure:
    attempt: int
    kind: FailureKind
    message: str


@dataclass
class StructuringRun:
    """State of one structuring call. Pure bookkeeping, no I/O."""

    max_attempts: int
    phase: StructuringPhase = StructuringPhase.BUILDING_PROMPT
    attempt: int = 0
    failures: List[AttemptFailure] = field(default_factory=list)
    history: List[StructuringPhase] = field(default_factory=lambda: [StructuringPhase.BUILDING_PROMPT])
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def is_terminal(self) -> bool:
        return self.phase in (StructuringPhase.SUCCESS, StructuringPhase.FAILED)

    @property
    def attempts_left(self) -> int:
        return self.max_attempts - self.attempt

    def _move(self, target: StructuringPhase) -> None:
        if target not in _PHASE_TRANSITIONS[self.phase]:
            raise RuntimeError(f"Illegal structuring transition {self.phase.value} -> {target.value}")
        self.phase = target
        self.history.append(target)

    def await_model(self) -> int:
        """Start the next attempt; returns its 1-based number."""
        self._move(StructuringPhase.AWAITING_MODEL)
        self.attempt += 1
        return self.attempt

    def validating(self) -> None:
        self._move(StructuringPhase.VALIDATING)

    def succeed(self) -> None:
        self._move(StructuringPhase.SUCCESS)

    def fail_attempt(self, kind: FailureKind, message: str) -> StructuringPhase:
        """Record a failed attempt and move to RETRYING or FAILED."""
        self.failures.append(AttemptFailure(self.attempt, kind, message))
        self._move(StructuringPhase.RETRYING if self.attempts_left > 0 else StructuringPhase.FAILED)
        return self.phase

    def repair_notes(self) -> List[str]:
        return [f.message for f in self.failures if f.kind == FailureKind.VALIDATION]

    def terminal_error(self, timeout_seconds: float) -> DomainError:
        """Error surfaced once the run is FAILED."""
        kinds = {f.kind for f in self.failures}
        last = self.failures[-1].message if self.failures else ""
        if kinds == {FailureKind.MODEL_TIMEOUT}:
            return ModelTimeoutError(self.attempt, timeout_seconds)
        if FailureKind.VALIDATION not in kinds:
            return ModelUnavailableError(self.attempt, last)
        last_validation = [f.message for f in self.failures if f.kind == FailureKind.VALIDATION][-1]
        return SchemaValidationFailedError(self.attempt, last_validation)


# ============================================================================
# VALIDATION
# ============================================================================


def _extract_json(raw_text: str) -> object:
    try:
        return json.loads(raw_text)
    except (TypeError, json.JSONDecodeError):
        pass
    # The model may wrap the document in a fenced block
    if raw_text and "```" in raw_text:
        fence = raw_text.find("```json")
        start = fence + 7 if fence != -1 else raw_text.find("```") + 3
        end = raw_text.find("```", start)
        if end != -1:
            try:
                return json.loads(raw_text[start:end].strip())
            except json.JSONDecodeError:
                pass
    raise ModelOutputInvalid("Response is not valid JSON")


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors()[:5]:
        location = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{location}: {err.get('msg')}")
    return "; ".join(parts)


def validate_model_output(
    raw_text: str, anamnesis_only: bool = False
) -> Union[StructuredOutput, AnamnesisOutput]:
    """
    Parse and validate raw model text.

    Raises:
        ModelOutputInvalid: With a message suitable for the repair prompt
    """
    data = _extract_json(raw_text)
    if not isinstance(data, dict):
        raise ModelOutputInvalid("Top-level JSON value must be an object")
    schema: Type[AnamnesisOutput] = AnamnesisOutput if anamnesis_only else StructuredOutput
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise ModelOutputInvalid(f"Schema validation failed: {_describe_validation_error(exc)}") from exc


# ============================================================================
# PROMPT
# ============================================================================

_SYSTEM_PROMPT = """Prompt version: {version}

You are a medical assistant that analyses transcripts of clinical consultations.
Always respond with a single valid JSON object only, no extra text."""


def build_prompt(
    transcript: str,
    context: Optional[StructuringContext],
    anamnesis_only: bool,
    repair_notes: Optional[List[str]] = None,
) -> str:
    """Prompt for one attempt; repair notes from failed attempts are appended."""
    lines: List[str] = []
    if context and not context.is_empty:
        if context.exams:
            lines.append("Attached exams:")
            for exam in context.exams:
                detail = f" ({exam.exam_type})" if exam.exam_type else ""
                lines.append(f"- [{exam.id}] {exam.name}{detail}")
        known = {exam.id for exam in context.exams}
        unresolved = [exam_id for exam_id in context.exam_ids if exam_id not in known]
        if unresolved:
            lines.append(f"Exam references: {', '.join(unresolved)}")
        if context.allergies:
            lines.append(f"Known allergies: {', '.join(context.allergies)}")
        if context.current_medications:
            lines.append(f"Current medications: {', '.join(context.current_medications)}")
    context_block = "\n".join(lines) if lines else "None provided"

    if anamnesis_only:
        task = "Write a complete, structured anamnesis for this consultation."
    else:
        task = (
            "Write a complete, structured anamnesis and suggest diagnoses (CID-10, at most 5), "
            "exams and medications (dosage, frequency and duration) that the consultation supports."
        )

    prompt = f"""
{task}

CONTEXT:
{context_block}

CONSULTATION TRANSCRIPT:
{transcript}

INSTRUCTIONS:
1. Base everything on what was said in the consultation and the context above
2. Structure the anamnesis with UPPERCASE section titles followed by a colon: ANAMNESE, QUEIXA PRINCIPAL, HISTÓRICO DA DOENÇA ATUAL, ANTECEDENTES PESSOAIS, MEDICAÇÕES EM USO, EXAMES REALIZADOS
3. Never suggest a medication the patient is allergic to
4. confidence is a number between 0 and 1

Language Rules:
- Write all natural-language text values in Brazilian Portuguese.
- Do NOT translate JSON keys or the kind values.

REQUIRED FORMAT (JSON):
{json.dumps(schema_hint(anamnesis_only), indent=2, ensure_ascii=False)}
"""
    if repair_notes:
        notes = "\n".join(f"- Attempt {i}: {note}" for i, note in enumerate(repair_notes, start=1))
        prompt += f"""
Your previous responses were rejected:
{notes}
Fix these problems and return ONLY the corrected JSON object.
"""
    return prompt


# ============================================================================
# ENGINE
# ============================================================================


class ClinicalStructuringEngine:
    """Structures transcripts through an untrusted language model."""

    def __init__(
        self,
        model: Optional[LanguageModel],
        settings: StructuringSettings,
        usage_sink: Optional[TokenUsageSink] = None,
    ) -> None:
        self._model = model
        self._settings = settings
        self._usage_sink = usage_sink

    async def structure(
        self,
        transcript: str,
        context: Optional[StructuringContext] = None,
        *,
        anamnesis_only: bool = False,
        consultation_id: Optional[str] = None,
    ) -> StructuringResult:
        """
        Structure a finalized transcript.

        Raises:
            EmptyInputError: Transcript is blank
            MissingCredentialsError: No configured model
            SchemaValidationFailedError: No attempt produced valid output
            ModelTimeoutError: Every attempt timed out
            ModelUnavailableError: Every attempt failed at the API level
        """
        if not transcript or not transcript.strip():
            raise EmptyInputError()
        if self._model is None or not self._model.is_configured:
            raise MissingCredentialsError()

        scenario = PromptScenario.ANAMNESIS if anamnesis_only else PromptScenario.STRUCTURING
        system = _SYSTEM_PROMPT.format(version=PROMPT_VERSIONS.get(scenario, "UNKNOWN"))
        hint = schema_hint(anamnesis_only)
        run = StructuringRun(max_attempts=self._settings.max_attempts)
        model_name: Optional[str] = None

        while not run.is_terminal:
            prompt = build_prompt(transcript, context, anamnesis_only, run.repair_notes())
            attempt = run.await_model()
            try:
                response: ModelResponse = await asyncio.wait_for(
                    self._model.generate(prompt, hint, system=system),
                    timeout=self._settings.request_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Structuring attempt {attempt}/{run.max_attempts} failed: MODEL_TIMEOUT "
                    f"after {self._settings.request_timeout_seconds}s (consultation={consultation_id})"
                )
                run.fail_attempt(FailureKind.MODEL_TIMEOUT, "model call timed out")
                continue
            except LanguageModelError as exc:
                logger.warning(
                    f"Structuring attempt {attempt}/{run.max_attempts} failed: MODEL_ERROR "
                    f"{exc.message} (consultation={consultation_id})"
                )
                run.fail_attempt(FailureKind.MODEL_ERROR, exc.message)
                continue

            run.usage = run.usage + response.usage
            model_name = response.model or model_name
            run.validating()
            try:
                output = validate_model_output(response.text, anamnesis_only)
            except ModelOutputInvalid as exc:
                logger.warning(
                    f"Structuring attempt {attempt}/{run.max_attempts} failed: VALIDATION "
                    f"{exc} (consultation={consultation_id})"
                )
                run.fail_attempt(FailureKind.VALIDATION, str(exc))
                continue
            run.succeed()

        await self._record_usage(run, consultation_id, model_name)

        if run.phase == StructuringPhase.FAILED:
            error = run.terminal_error(self._settings.request_timeout_seconds)
            record_structuring_outcome(error.error_code, run.attempt)
            logger.error(
                f"Structuring failed with {error.error_code} after {run.attempt} attempt(s) "
                f"(consultation={consultation_id})"
            )
            raise error

        suggestions = [] if anamnesis_only else self._apply_caps(output.suggestions)
        record_structuring_outcome("SUCCESS", run.attempt)
        logger.info(
            f"Structuring succeeded on attempt {run.attempt}: {len(suggestions)} suggestion(s), "
            f"{run.usage.total_tokens} tokens (consultation={consultation_id})"
        )
        return StructuringResult(
            anamnesis=output.anamnesis,
            suggestions=suggestions,
            usage=run.usage,
            attempts=run.attempt,
            model=model_name,
        )

    def _apply_caps(self, suggestions: List[Suggestion]) -> List[Suggestion]:
        limits = {
            SuggestionKind.DIAGNOSIS: self._settings.max_diagnoses,
            SuggestionKind.EXAM: self._settings.max_exams,
            SuggestionKind.MEDICATION: self._settings.max_medications,
        }
        counts = {kind: 0 for kind in limits}
        kept: List[Suggestion] = []
        for suggestion in suggestions:
            kind = suggestion.canonical_kind
            if counts[kind] >= limits[kind]:
                continue
            counts[kind] += 1
            kept.append(suggestion)
        if len(kept) < len(suggestions):
            logger.info(f"Dropped {len(suggestions) - len(kept)} suggestion(s) over the per-kind limits")
        return kept

    async def _record_usage(
        self, run: StructuringRun, consultation_id: Optional[str], model_name: Optional[str]
    ) -> None:
        if self._usage_sink is None:
            return
        try:
            await self._usage_sink.record(
                run.usage,
                consultation_id=consultation_id,
                model=model_name,
                success=run.phase == StructuringPhase.SUCCESS,
            )
        except Exception as e:
            # usage accounting never decides the structuring outcome
            logger.error(f"Failed to record token usage for {consultation_id or 'ad-hoc request'}: {e}", exc_info=True)
