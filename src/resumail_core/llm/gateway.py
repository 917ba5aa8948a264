"""
Oracle client: chat-completions gateway with retry logic, plus the two call
shapes used by the pipeline (batch classification and report merging).
"""
import json
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog
import tenacity

from resumail_core.config import LLMConfig, PipelineConfig
from resumail_core.errors import OracleUnavailable
from resumail_core.llm.prompt_registry import render_instruction
from resumail_core.llm.schemas import AnalysisResult, EmailRecord
from resumail_core.observability.metrics import MetricsCollector

logger = structlog.get_logger()

ROLE_CLASSIFY = "classify"
ROLE_MERGE = "merge"

RETRYABLE_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504}


def _is_retryable(exc: BaseException) -> bool:
    """Transport failures and throttling/server errors are worth a second try."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return False


class LLMGateway:
    """Client for an OpenAI-compatible chat completions endpoint."""

    def __init__(self, config: LLMConfig, transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self.last_latency_ms = 0
        self.last_usage: Dict[str, int] = {}
        self.client = httpx.Client(
            timeout=httpx.Timeout(self.config.timeout_s),
            headers=self.config.headers,
            transport=transport,
        )

    def complete(
        self,
        system_instruction: str,
        user_text: str,
        max_output_tokens: int,
        temperature: float,
    ) -> str:
        """
        Send one system+user exchange and return the assistant text.

        Retries transient failures; anything left over propagates as an
        httpx exception.

        Returns:
            Assistant message content ("" when the model refused or sent nothing)
        """
        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": user_text},
            ],
            "temperature": temperature,
            "max_tokens": max_output_tokens,
        }

        retrying = tenacity.Retrying(
            stop=tenacity.stop_after_attempt(self.config.max_retries),
            wait=tenacity.wait_fixed(1),
            retry=tenacity.retry_if_exception(_is_retryable),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return self._post(payload)
        return ""

    def _post(self, payload: Dict[str, Any]) -> str:
        start_time = time.time()

        headers = self.config.headers.copy()
        headers["Authorization"] = f"Bearer {self.config.get_token()}"

        try:
            response = self.client.post(self.config.endpoint, json=payload, headers=headers)
            self.last_latency_ms = int((time.time() - start_time) * 1000)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Oracle request failed with HTTP error",
                         status_code=e.response.status_code,
                         error=str(e))
            raise
        except httpx.TransportError as e:
            logger.error("Oracle request failed", error=str(e))
            raise

        result = response.json()
        message = (result.get("choices") or [{}])[0].get("message") or {}
        content = message.get("content") or ""

        if not content and message.get("refusal"):
            logger.warning("Oracle refused request", refusal=str(message["refusal"])[:200])

        usage = result.get("usage") or {}
        self.last_usage = {
            "tokens_in": usage.get("prompt_tokens") or 0,
            "tokens_out": usage.get("completion_tokens") or 0,
        }

        logger.info("Oracle request successful",
                    latency_ms=self.last_latency_ms,
                    **self.last_usage)
        return content

    def close(self):
        """Close the HTTP client."""
        self.client.close()


class OracleClient:
    """Role-specific oracle calls that fail with OracleUnavailable only."""

    def __init__(
        self,
        service,
        llm_config: LLMConfig,
        pipeline_config: PipelineConfig,
        metrics: MetricsCollector = None,
    ):
        """
        Initialize oracle client.

        Args:
            service: Object exposing ``complete(system_instruction, user_text,
                max_output_tokens, temperature)``; usually an ``LLMGateway``
            llm_config: Temperature and output token budgets
            pipeline_config: Payload character budget
            metrics: Optional Prometheus collector
        """
        self.service = service
        self.llm_config = llm_config
        self.pipeline_config = pipeline_config
        self.metrics = metrics
        self._max_tokens = {
            ROLE_CLASSIFY: llm_config.classify_max_tokens,
            ROLE_MERGE: llm_config.merge_max_tokens,
        }

    def invoke(self, role: str, payload_text: str, trace_id: str = None) -> str:
        """
        Run one oracle call for ``role``.

        Raises:
            OracleUnavailable: On any call error or an empty answer
        """
        instruction = render_instruction(role)
        start_time = time.time()
        try:
            raw = self.service.complete(
                instruction,
                payload_text,
                self._max_tokens[role],
                self.llm_config.temperature,
            )
        except Exception as e:
            self._record(role, "failed", start_time)
            logger.warning("Oracle call failed", role=role, error=str(e), trace_id=trace_id)
            raise OracleUnavailable(role, str(e) or type(e).__name__) from e

        if not isinstance(raw, str) or not raw.strip():
            self._record(role, "failed", start_time)
            logger.warning("Oracle returned empty response", role=role, trace_id=trace_id)
            raise OracleUnavailable(role, "empty response")

        self._record(role, "ok", start_time)
        return raw

    def classify_batch(self, batch: Sequence[EmailRecord], trace_id: str = None) -> str:
        return self.invoke(ROLE_CLASSIFY, self.render_batch(batch), trace_id)

    def merge_group(self, group: Sequence[AnalysisResult], trace_id: str = None) -> str:
        return self.invoke(ROLE_MERGE, self.render_merge(group), trace_id)

    def render_batch(self, batch: Sequence[EmailRecord]) -> str:
        """Render records as numbered lines, cut to the payload budget."""
        text = "\n\n".join(
            f"Record {i} (from: {record.sender}, subject: {record.subject}): {record.body}"
            for i, record in enumerate(batch, 1)
        )
        budget = self.pipeline_config.payload_char_budget
        return f"Analyze the following {len(batch)} emails:\n\n{text[:budget]}"

    def render_merge(self, group: Sequence[AnalysisResult]) -> str:
        parts: List[str] = []
        for i, result in enumerate(group, 1):
            parts.append(f"REPORT {i}:\n{json.dumps(result.model_dump(), ensure_ascii=False)}")
        return "\n\n".join(parts)

    def _record(self, role: str, status: str, start_time: float) -> None:
        if self.metrics:
            latency_ms = (time.time() - start_time) * 1000
            self.metrics.record_oracle_call(role, status, latency_ms)
