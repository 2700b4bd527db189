"""
Prompt registry for LLM scenarios and version tracking.

Every language model call is tagged with its scenario and the prompt version
in use, so telemetry can be grouped by prompt revision.
"""

from __future__ import annotations

from enum import Enum


class PromptScenario(str, Enum):
    """LLM scenarios for telemetry and prompt versioning."""

    STRUCTURING = "consultation_structuring"
    ANAMNESIS = "anamnesis_only"


PROMPT_VERSIONS: dict[PromptScenario, str] = {
    PromptScenario.STRUCTURING: "STRUCTURING_V1_2026-10-01",
    PromptScenario.ANAMNESIS: "ANAMNESIS_V1_2026-10-01",
}


__all__ = ["PromptScenario", "PROMPT_VERSIONS"]
