"""Document Understanding Service: interface and LLM-backed implementation.

The core only ever sees the :class:`DocumentUnderstandingService` protocol,
which returns raw response text. Parsing and validation live in
:mod:`portco_ledger.extractor.schemas`, so any implementation (a hosted model,
a rules engine, a test double) can be injected into the pipeline.

:class:`LLMDocumentService` walks a provider chain from
``config.json → document_service.providers`` (OpenRouter models through the
OpenAI SDK, then Mistral chat). Each provider is retried with exponential
backoff and every request is bounded by ``timeout_seconds``.
"""

from __future__ import annotations

import json
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from portco_ledger.config import (
    AUDIT_DIR,
    get_merged_section,
    get_mistral_client,
    get_openrouter_client,
    setup_logging,
)
from portco_ledger.extractor.strategies import Strategy, StrategyResult, run_strategies

if TYPE_CHECKING:
    from pathlib import Path

logger = setup_logging(__name__)

__all__ = [
    "DocumentServiceError",
    "DocumentUnderstandingService",
    "LLMDocumentService",
]


class DocumentServiceError(RuntimeError):
    """Raised when no provider produced a response."""


class DocumentUnderstandingService(Protocol):
    """Black-box collaborator that resolves what the scanner cannot."""

    def describe_structure(self, digest: str) -> str:
        """Return structural JSON for a document digest."""
        ...

    def match_metrics(self, request: dict[str, Any]) -> str:
        """Return ``{matches: {...}}`` JSON for target metrics and a label index."""
        ...

    def summarize_document(self, content: str, filename: str) -> str:
        """Return a best-effort financial summary of a whole document."""
        ...

    def classify_metric(self, label: str, vocabulary: list[str], context: dict[str, Any]) -> str:
        """Return ``{canonical, confidence, reasoning}`` JSON for one label."""
        ...


# =============================================================================
# Prompts
# =============================================================================

STRUCTURE_PROMPT = """You are given a digest of a financial spreadsheet: sheet names,
dimensions, and the first and last rows of each sheet with cell references.

For every sheet that holds monthly or quarterly figures, return:
- dateHeaderRow: the 1-based row holding period headers
- scenarioLabelRow: the 1-based row labelling columns as Actual or Budget/Forecast/Plan
- actualColumns: column letters explicitly labelled Actual
- budgetColumns: column letters explicitly labelled Budget, Forecast or Plan
- columnDates: column letter -> first day of the period (YYYY-MM-DD)
- metricRows (optional): metric id -> 1-based row, only for obvious rows

Only tag a column when a label row says so. Never infer scenarios from position.
Respond with JSON only: {{"sheets": {{"<sheet name>": {{...}}}}}}

DIGEST:
{digest}"""

MATCH_PROMPT = """Match each target metric to the row that reports it.

TARGET METRICS (id: known labels):
{targets}

ROW LABELS PER SHEET (row: label):
{labels}

Return only confident matches. If no row clearly reports a metric, omit it.
Respond with JSON only: {{"matches": {{"<metric id>": {{"sheet": "<sheet>", "row": <row>}}}}}}"""

SUMMARY_PROMPT = """Extract the key financial figures from this document ({filename}).

Respond with JSON only:
{{
  "period": "reporting period, e.g. 'Sep 2024' or '2024-09'",
  "currency": "ISO currency code",
  "actuals": {{"<metric>": <number>}},
  "budget": {{"<metric>": <number>}},
  "explanations": [{{"metric": "<metric>", "type": "restatement|correction|forecast_revision|one_time|commentary|other", "text": "..."}}]
}}

Use plain numbers without separators or currency symbols.

DOCUMENT:
{content}"""

CLASSIFY_PROMPT = """Map the financial metric label "{label}" to one canonical id.

CANONICAL VOCABULARY:
{vocabulary}

CONTEXT:
{context}

Respond with JSON only:
{{"canonical": "<id from the vocabulary, or <id>_<detail> for a sub-metric>", "confidence": <0.0-1.0>, "reasoning": "..."}}"""


# =============================================================================
# LLM-backed Implementation
# =============================================================================


class LLMDocumentService:
    """Document Understanding Service backed by hosted chat models.

    Parameters
    ----------
    settings : dict[str, Any], optional
        Overrides deep-merged onto ``config.json → document_service``.
    audit_dir : Path, optional
        Where responses are saved when ``save_responses`` is enabled.
    openrouter_client, mistral_client : optional
        Pre-built SDK clients; created on first use when omitted.
    """

    def __init__(
        self,
        settings: dict[str, Any] | None = None,
        audit_dir: Path | None = None,
        openrouter_client: Any = None,
        mistral_client: Any = None,
    ) -> None:
        self.settings = get_merged_section("document_service", settings)
        self.audit_dir = audit_dir or AUDIT_DIR / "document_service"
        self.timeout_seconds = float(self.settings.get("timeout_seconds", 60))
        self._openrouter = openrouter_client
        self._mistral = mistral_client

    # -- protocol ---------------------------------------------------------

    def describe_structure(self, digest: str) -> str:
        return self._complete(STRUCTURE_PROMPT.format(digest=digest), purpose="structure")

    def match_metrics(self, request: dict[str, Any]) -> str:
        targets = "\n".join(
            f"- {metric}: {', '.join(labels) or metric}" for metric, labels in request["targets"].items()
        )
        labels = json.dumps(request["labels"], ensure_ascii=False, indent=1)
        return self._complete(MATCH_PROMPT.format(targets=targets, labels=labels), purpose="match")

    def summarize_document(self, content: str, filename: str) -> str:
        max_chars = int(self.settings.get("max_document_chars", 50000))
        if len(content) > max_chars:
            logger.info("Truncating %s from %s to %s chars", filename, len(content), max_chars)
            content = content[:max_chars]
        return self._complete(SUMMARY_PROMPT.format(filename=filename, content=content), purpose="summary")

    def classify_metric(self, label: str, vocabulary: list[str], context: dict[str, Any]) -> str:
        prompt = CLASSIFY_PROMPT.format(
            label=label,
            vocabulary=", ".join(vocabulary),
            context=json.dumps(context, ensure_ascii=False),
        )
        return self._complete(prompt, purpose="classify")

    # -- provider chain ---------------------------------------------------

    def _complete(self, prompt: str, purpose: str) -> str:
        """Run the provider chain and return the first successful response text.

        Raises
        ------
        DocumentServiceError
            If every provider failed.
        """
        retry = self.settings.get("retry", {})
        strategies = [
            Strategy(
                name=f"{p['provider']}/{p['model']}",
                run=lambda p=p: self._run_with_retries(
                    provider=p["provider"],
                    model=p["model"],
                    prompt=prompt,
                    purpose=purpose,
                    max_attempts=int(retry.get("max_attempts", 2)),
                    base_delay=float(retry.get("base_delay_seconds", 1.0)),
                    max_delay=float(retry.get("max_delay_seconds", 8.0)),
                ),
            )
            for p in self.settings.get("providers", [])
        ]

        outcome = run_strategies(strategies)
        if not outcome.ok or outcome.result.data is None:
            msg = f"All document service providers failed for '{purpose}': {outcome.result.error}"
            raise DocumentServiceError(msg)
        return outcome.result.data

    def _run_with_retries(
        self,
        provider: str,
        model: str,
        prompt: str,
        purpose: str,
        max_attempts: int,
        base_delay: float,
        max_delay: float,
    ) -> StrategyResult[str]:
        """Call one provider with exponential backoff between attempts."""
        last_error = "not attempted"
        for attempt in range(max_attempts):
            logger.info(f"Document service '{purpose}' attempt {attempt + 1}/{max_attempts} with {provider}/{model}")
            result = self._call_provider(provider, model, prompt)

            if self.settings.get("save_responses", True):
                self._save_audit_response({**result, "purpose": purpose, "attempt": attempt + 1}, model)

            if result.get("success") and result.get("content"):
                return StrategyResult.success(result["content"])

            last_error = result.get("error", "empty response")
            logger.warning("Document service call failed: %s", last_error)

            if attempt < max_attempts - 1:
                delay = min(base_delay * (2**attempt), max_delay)
                logger.debug("Waiting %ss before retry...", delay)
                time.sleep(delay)

        logger.warning("All %s attempts failed for %s/%s", max_attempts, provider, model)
        return StrategyResult.retryable(last_error)

    def _call_provider(self, provider: str, model: str, prompt: str) -> dict[str, Any]:
        """Send a single chat request; failures come back as ``success: False``."""
        messages = [{"role": "user", "content": prompt}]
        try:
            if provider == "mistral":
                response = self._mistral_client().chat.complete(
                    model=model,
                    messages=messages,
                    temperature=0,
                )
            elif provider == "openrouter":
                response = self._openrouter_client().chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=0,
                    max_tokens=4096,
                )
            else:
                return {"success": False, "provider": provider, "model": model, "error": "unknown provider"}

            usage = getattr(response, "usage", None)
            return {
                "success": True,
                "provider": provider,
                "model": model,
                "content": response.choices[0].message.content,
                "usage": {
                    "prompt_tokens": getattr(usage, "prompt_tokens", 0) if usage else 0,
                    "completion_tokens": getattr(usage, "completion_tokens", 0) if usage else 0,
                },
            }
        except Exception as e:
            logger.exception("%s call failed: %s", provider, e)
            return {"success": False, "provider": provider, "model": model, "error": str(e)}

    def _openrouter_client(self) -> Any:
        if self._openrouter is None:
            self._openrouter = get_openrouter_client(self.timeout_seconds)
        return self._openrouter

    def _mistral_client(self) -> Any:
        if self._mistral is None:
            self._mistral = get_mistral_client(self.timeout_seconds)
        return self._mistral

    def _save_audit_response(self, result: dict[str, Any], model: str) -> None:
        """Persist a provider response for traceability."""
        self.audit_dir.mkdir(parents=True, exist_ok=True)

        model_safe = model.replace("/", "_").replace(".", "_")
        timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S_%f")
        filepath = self.audit_dir / f"{result.get('purpose', 'call')}_{model_safe}_{timestamp}.json"

        with filepath.open("w", encoding="utf-8") as f:
            json.dump(result, f, indent=2, ensure_ascii=False, default=str)

        logger.debug("Audit response saved: %s", filepath)
