"""
Single entry point for chat completions.

Each completion runs inside an ``llm_call`` span tagged with the prompt
scenario and its version; latency and token counts feed the AI request
metrics whether the call succeeds or not.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from clinicstream.adapters.external.prompt_registry import PROMPT_VERSIONS, PromptScenario
from clinicstream.core.ai_client import ChatClient
from clinicstream.observability.metrics import record_ai_request
from clinicstream.observability.tracing import add_span_attribute, set_span_status, trace_operation

logger = logging.getLogger(__name__)


def _usage_counts(response: Any) -> Dict[str, int]:
    usage = getattr(response, "usage", None)
    return {
        name: int(getattr(usage, name, 0) or 0)
        for name in ("prompt_tokens", "completion_tokens", "total_tokens")
    }


async def call_llm_with_telemetry(
    ai_client: ChatClient,
    scenario: PromptScenario,
    messages: List[Dict[str, str]],
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    **kwargs: Any,
) -> Any:
    """
    Run one chat completion for ``scenario`` and record its telemetry.

    Extra keyword arguments (e.g. ``response_format``) go to the client
    unchanged. Client errors are re-raised after being recorded.
    """
    version = PROMPT_VERSIONS.get(scenario, "UNKNOWN")
    model_name = model or ai_client.default_model
    attributes = {
        "llm.scenario": scenario.value,
        "llm.prompt_version": version,
        "llm.model": model_name,
        "llm.provider": ai_client.provider,
        "llm.messages": len(messages),
    }
    started = time.perf_counter()

    with trace_operation("llm_call", attributes) as span:
        try:
            response = await ai_client.chat(
                messages=messages, model=model, temperature=temperature, max_tokens=max_tokens, **kwargs
            )
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            add_span_attribute(span, "llm.latency_ms", elapsed_ms)
            set_span_status(span, success=False, error_message=f"{type(e).__name__}: {e}"[:200])
            record_ai_request(model_name, elapsed_ms, 0, success=False)
            logger.error(f"{scenario.value} ({version}) failed after {elapsed_ms:.0f} ms: {type(e).__name__}")
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        counts = _usage_counts(response)
        add_span_attribute(span, "llm.latency_ms", elapsed_ms)
        for name, value in counts.items():
            add_span_attribute(span, f"llm.{name}", value)
        set_span_status(span, success=True)
        record_ai_request(model_name, elapsed_ms, counts["total_tokens"], success=True)

        logger.info(
            f"{scenario.value} ({version}) completed in {elapsed_ms:.0f} ms, "
            f"{counts['prompt_tokens']}+{counts['completion_tokens']} tokens"
        )
        return response
