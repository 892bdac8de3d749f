"""HTTP client for the Gemini ``generateContent`` REST API.

Provides the two collaborators the dashboard depends on:

- extraction: BMS screenshots (data URIs or URLs) to :class:`Reading` objects,
- advisory: health summary, deviation alerts, alert summary, insights and
  power recommendation.

Every call asks the model for a JSON response and validates it with pydantic.
"""

import json
import mimetypes
from typing import Any

import httpx
from pydantic import ValidationError

from batteryview.api import prompts
from batteryview.core.config import GeminiConfig
from batteryview.core.logger import get_logger
from batteryview.models.reading import AdvisoryPayload, AlertSummary, Insight, Reading

logger = get_logger(__name__)


class GeminiAPIError(Exception):
    """Custom exception for Gemini API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        model: str | None = None,
        response: dict[str, Any] | None = None,
    ) -> None:
        """Initialize Gemini API error.

        Args:
            message: Error message
            status_code: HTTP status code
            model: Model that was called
            response: Decoded error body
        """
        super().__init__(message)
        self.status_code = status_code
        self.model = model
        self.response = response


class RateLimitError(GeminiAPIError):
    """Quota or rate limit exhausted (HTTP 429 / RESOURCE_EXHAUSTED)."""


class ExtractionError(GeminiAPIError):
    """The model output does not match the reading schema."""


class MissingCredentialError(GeminiAPIError):
    """No API key configured."""


def is_transient(error: BaseException) -> bool:
    """Tell whether an error is a rate-limit condition worth waiting out."""
    if isinstance(error, RateLimitError):
        return True
    message = str(error).lower()
    return "resource_exhausted" in message or "rate limit" in message


def _image_part(payload: str) -> dict[str, Any]:
    """Convert a data URI or URL into a Gemini content part."""
    if payload.startswith("data:"):
        header, _, data = payload.partition(",")
        mime_type = header[len("data:") :].split(";")[0] or "image/png"
        if ";base64" not in header or not data:
            raise ExtractionError("Image payload must be a base64 data URI")
        return {"inline_data": {"mime_type": mime_type, "data": data}}

    mime_type = mimetypes.guess_type(payload)[0] or "image/png"
    return {"file_data": {"mime_type": mime_type, "file_uri": payload}}


class GeminiClient:
    """Async client for the Gemini API."""

    def __init__(
        self, config: GeminiConfig, http_client: httpx.AsyncClient | None = None
    ) -> None:
        """Initialize Gemini client.

        Args:
            config: Gemini configuration (API key, models, timeout)
            http_client: HTTP client to reuse (created lazily if None)
        """
        self.config = config
        self._http_client = http_client

    @property
    def has_credentials(self) -> bool:
        return self.config.has_credentials

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.config.timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._http_client

    async def generate_json(self, model: str, parts: list[dict[str, Any]]) -> Any:
        """Call ``generateContent`` and decode the JSON answer.

        Args:
            model: Model name, e.g. ``gemini-1.5-flash-latest``
            parts: Content parts (text and images)

        Returns:
            Decoded JSON document produced by the model

        Raises:
            MissingCredentialError: If no API key is configured
            RateLimitError: On HTTP 429
            GeminiAPIError: On any other HTTP, network or decoding failure
        """
        if not self.has_credentials:
            raise MissingCredentialError("Gemini API key is not configured", model=model)

        url = f"{self.config.api_url.rstrip('/')}/models/{model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"responseMimeType": "application/json"},
        }

        http_client = await self._get_http_client()

        logger.debug("gemini_request_sent", model=model, parts=len(parts))

        try:
            response = await http_client.post(
                url, json=body, headers={"x-goog-api-key": self.config.api_key}
            )
        except httpx.HTTPError as e:
            logger.error("gemini_network_error", model=model, error=str(e))
            raise GeminiAPIError(f"Request to {model} failed: {e}", model=model) from e

        if response.status_code >= 400:
            try:
                error_body = response.json()
            except ValueError:
                error_body = None
            error = error_body.get("error") if isinstance(error_body, dict) else None
            if not isinstance(error, dict):
                error = {}
            message = error.get("message") or response.text[:200]
            status = error.get("status", "")

            logger.warning(
                "gemini_http_error",
                model=model,
                status_code=response.status_code,
                status=status,
                error_message=message,
            )

            error_cls = (
                RateLimitError
                if response.status_code == 429 or status == "RESOURCE_EXHAUSTED"
                else GeminiAPIError
            )
            raise error_cls(
                f"Gemini API error {response.status_code}: {message}",
                status_code=response.status_code,
                model=model,
                response=error_body,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise GeminiAPIError("Response body is not JSON", model=model) from e

        try:
            text = "".join(
                part.get("text", "")
                for part in data["candidates"][0]["content"]["parts"]
            )
        except (KeyError, IndexError, TypeError) as e:
            raise GeminiAPIError(
                "No output from model", model=model, response=data
            ) from e

        try:
            result = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(
                "gemini_json_decode_error",
                model=model,
                error=str(e),
                response_preview=text[:100],
            )
            raise GeminiAPIError(
                "Model output is not valid JSON", model=model, response=data
            ) from e

        logger.debug("gemini_request_success", model=model)
        return result

    async def extract_readings(self, payloads: list[str]) -> list[Reading]:
        """Extract one reading per BMS screenshot.

        Args:
            payloads: Base64 data URIs (or URLs) of the screenshots

        Returns:
            Readings, in payload order

        Raises:
            ExtractionError: If the output is missing or does not match the schema
        """
        model = self.config.vision_model
        parts: list[dict[str, Any]] = [{"text": prompts.EXTRACTION_PROMPT}]
        parts.extend(_image_part(payload) for payload in payloads)

        result = await self.generate_json(model, parts)

        entries = result.get("results") if isinstance(result, dict) else None
        if not isinstance(entries, list) or len(entries) != len(payloads):
            raise ExtractionError(
                f"Expected {len(payloads)} result(s) from extraction",
                model=model,
                response=result if isinstance(result, dict) else None,
            )

        try:
            readings = [Reading.model_validate(entry) for entry in entries]
        except ValidationError as e:
            raise ExtractionError(
                f"Extraction output does not match the reading schema: {e}",
                model=model,
            ) from e

        logger.info("bms_readings_extracted", count=len(readings))
        return readings

    async def summarize_health(self, payload: AdvisoryPayload) -> str:
        """Summarize battery health in a few sentences."""
        result = await self.generate_json(
            self.config.text_model,
            [{"text": prompts.health_summary_prompt(payload)}],
        )
        summary = result.get("summary") if isinstance(result, dict) else None
        if not isinstance(summary, str):
            raise GeminiAPIError("Health summary missing from output", response=result)
        return summary

    async def detect_alerts(self, payload: AdvisoryPayload) -> list[str]:
        """List deviations worth alerting on (empty when nothing is wrong)."""
        result = await self.generate_json(
            self.config.text_model,
            [{"text": prompts.alerts_prompt(payload)}],
        )
        alerts = result.get("alerts") if isinstance(result, dict) else None
        if not isinstance(alerts, list):
            raise GeminiAPIError("Alerts missing from output", response=result)
        return [str(alert) for alert in alerts]

    async def summarize_alerts(self, alerts: list[str]) -> AlertSummary:
        """Condense several alerts into a summary and a recommendation."""
        result = await self.generate_json(
            self.config.text_model,
            [{"text": prompts.alert_summary_prompt(alerts)}],
        )
        try:
            return AlertSummary.model_validate(result)
        except ValidationError as e:
            raise GeminiAPIError(f"Invalid alert summary: {e}", response=result) from e

    async def generate_insights(
        self, soc: float, power: float, location: str
    ) -> list[Insight]:
        """Generate forward-looking insights for fresh data."""
        result = await self.generate_json(
            self.config.text_model,
            [{"text": prompts.insights_prompt(soc, power, location)}],
        )
        entries = result.get("insights") if isinstance(result, dict) else None
        if not isinstance(entries, list):
            raise GeminiAPIError("Insights missing from output", response=result)
        try:
            return [Insight.model_validate(entry) for entry in entries]
        except ValidationError as e:
            raise GeminiAPIError(f"Invalid insights: {e}", response=result) from e

    async def generate_power_recommendation(
        self, soc: float, power: float, location: str
    ) -> str:
        """One actionable power-usage sentence for fresh data."""
        result = await self.generate_json(
            self.config.text_model,
            [{"text": prompts.power_recommendation_prompt(soc, power, location)}],
        )
        recommendation = (
            result.get("recommendation") if isinstance(result, dict) else None
        )
        if not isinstance(recommendation, str) or not recommendation.strip():
            raise GeminiAPIError("Recommendation missing from output", response=result)
        return recommendation.strip()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "GeminiClient":
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        await self.close()
