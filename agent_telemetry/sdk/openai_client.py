"""
Instrumented OpenAI client wrapper.

Records run and token telemetry for each chat completion without modifying
the call or its response.
"""

import secrets
import time
from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..core.pricing import PricingTable, calculate_cost
from ..core.token_counter import TokenUsage
from ..storage.event_store import EventStore
from ..storage.models import EventType

ATTEMPT_ID_PREFIX = "att_"


def _cached_tokens(usage: Any) -> int:
    details = getattr(usage, "prompt_tokens_details", None)
    cached = getattr(details, "cached_tokens", None)
    return cached if isinstance(cached, int) else 0


class InstrumentedOpenAI:
    """OpenAI client wrapper that emits run telemetry.

    Every ``chat`` call is one run: ``run.started`` before the request, then
    ``run.tokens`` and ``run.completed`` on success or ``run.error`` when the
    request raises. Telemetry write failures are loud.
    """

    def __init__(
        self,
        store: EventStore,
        model: str,
        agent: str,
        task_id: Optional[str] = None,
        project: Optional[str] = None,
        pricing: Optional[PricingTable] = None,
        client: Optional[OpenAI] = None
    ):
        """Initialize instrumented OpenAI client.

        Args:
            store: Event store receiving the telemetry (required)
            model: OpenAI model name (required)
            agent: Agent name recorded on every event (required)
            task_id: Task the runs belong to
            project: Project the runs belong to
            pricing: Pricing table for the recorded cost (defaults to the built-in table)
            client: Preconfigured OpenAI client (defaults to ``OpenAI()``)

        Raises:
            ValueError: If model or agent is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not agent or not agent.strip():
            raise ValueError("agent is required and cannot be empty")

        self.store = store
        self.model = model
        self.agent = agent
        self.task_id = task_id
        self.project = project
        self.pricing = pricing
        self.client = client or OpenAI()

    def _emit(self, event_type: EventType, attempt_id: str, **fields):
        return self.store.emit(
            event_type,
            task_id=self.task_id,
            project=self.project,
            agent=self.agent,
            model=self.model,
            attempt_id=attempt_id,
            **fields
        )

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create chat completion with run telemetry.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty
            OpenAI API errors: Propagated after run.error is recorded
            PersistenceError: If telemetry cannot be written
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        attempt_id = ATTEMPT_ID_PREFIX + secrets.token_urlsafe(9)
        self._emit(EventType.RUN_STARTED, attempt_id)
        started = time.monotonic()

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
        except Exception as e:
            self._emit(
                EventType.RUN_ERROR,
                attempt_id,
                error=str(e),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            raise

        duration_ms = int((time.monotonic() - started) * 1000)

        usage = response.usage
        if usage:
            token_usage = TokenUsage(
                input_tokens=usage.prompt_tokens,
                output_tokens=usage.completion_tokens,
                cache_tokens=_cached_tokens(usage),
            )
            self._emit(
                EventType.RUN_TOKENS,
                attempt_id,
                input_tokens=token_usage.input_tokens,
                output_tokens=token_usage.output_tokens,
                cache_tokens=token_usage.cache_tokens,
                total_tokens=usage.total_tokens,
                cost=calculate_cost(self.model, token_usage, self.pricing),
            )

        self._emit(EventType.RUN_COMPLETED, attempt_id, success=True, duration_ms=duration_ms)

        return response
