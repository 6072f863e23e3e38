"""
Geoglyph Vision Agent - direct Chat Completions call with vision

Sends one satellite thumbnail plus a fixed archaeological evaluation prompt
to GPT-4o (OpenAI or Azure OpenAI) and parses the strict JSON verdict into a
ValidationResult. No tools, no conversation memory, no retries.
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError, field_validator

from app_config import AZURE_OPENAI_API_VERSION, AppConfig
from errors import (
    ConfigurationError,
    DataShapeError,
    InvalidInputError,
    NoContentError,
    UpstreamError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)


GEOGLYPH_EVALUATION_PROMPT = """You are an expert archaeologist analyzing satellite imagery for potential geoglyphs or archaeological features in the Amazon rainforest.

Analyze this satellite image and determine if it shows:
1. Potential geoglyphs (earthworks, geometric patterns)
2. Archaeological features (cleared areas, linear features, circular structures)
3. Natural formations that might be mistaken for archaeological features

Provide your analysis in JSON format with:
- isValid (boolean): true if this appears to be a valid archaeological feature
- confidence (number 0-100): your confidence level
- analysis (string): detailed explanation of what you observe
- features (array of strings): list of notable features observed

Be thorough but cautious. Consider vegetation patterns, geometric shapes, and human-made versus natural features."""


class ValidationResult(BaseModel):
    """Archaeological plausibility verdict for one image."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_valid: StrictBool = Field(..., alias="isValid")
    confidence: float = Field(..., ge=0, le=100)
    analysis: StrictStr
    features: List[StrictStr]

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence_is_numeric(cls, value: Any) -> Any:
        # bool is an int subclass and numeric strings would otherwise coerce
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"confidence must be a number, got {type(value).__name__}")
        return value

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def parse_validation_result(content: Optional[str]) -> ValidationResult:
    """Parse the model's message content; never fills in missing fields."""
    if content is None or not content.strip():
        raise NoContentError("No response content from vision model")

    try:
        document = json.loads(content)
    except ValueError as e:
        raise DataShapeError(f"Vision model returned invalid JSON: {e}") from e

    if not isinstance(document, dict):
        raise DataShapeError(f"Vision model returned {type(document).__name__}, expected a JSON object")

    try:
        return ValidationResult.model_validate(document)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
        )
        raise DataShapeError(f"Vision model response has the wrong shape: {problems}") from e


def check_image_reference(image_url: Any) -> str:
    if not image_url or not isinstance(image_url, str):
        raise InvalidInputError("Image URL is required", error="Image URL is required")
    if image_url.startswith("data:image/") and ";base64," in image_url:
        return image_url
    if image_url.startswith(("https://", "http://")):
        return image_url
    raise InvalidInputError(
        "imageUrl must be a data:image/...;base64 URI or an http(s) URL",
        error="Invalid image URL",
    )


class GeoglyphVisionAgent:
    """Single-shot vision classifier."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        base_url: str = "https://api.openai.com/v1",
        azure_endpoint: Optional[str] = None,
        azure_api_key: Optional[str] = None,
        azure_deployment: str = "gpt-4o",
        timeout_seconds: float = 60.0,
        max_tokens: int = 1000,
        session_factory: Optional[Callable[[aiohttp.ClientTimeout], Any]] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.azure_endpoint = azure_endpoint
        self.azure_api_key = azure_api_key
        self.azure_deployment = azure_deployment
        self.max_tokens = max_tokens
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session_factory = session_factory or (lambda timeout: aiohttp.ClientSession(timeout=timeout))

    @classmethod
    def from_config(cls, cfg: AppConfig) -> "GeoglyphVisionAgent":
        return cls(
            api_key=cfg.openai_api_key,
            model=cfg.openai_model,
            base_url=cfg.openai_base_url,
            azure_endpoint=cfg.azure_openai_endpoint,
            azure_api_key=cfg.azure_openai_api_key,
            azure_deployment=cfg.azure_openai_deployment,
            timeout_seconds=cfg.vision_timeout_seconds,
        )

    @property
    def uses_azure(self) -> bool:
        return bool(self.azure_endpoint and self.azure_api_key)

    def _endpoint_and_headers(self):
        headers = {"Content-Type": "application/json"}
        if self.uses_azure:
            url = (
                f"{self.azure_endpoint.rstrip('/')}/openai/deployments/{self.azure_deployment}"
                f"/chat/completions?api-version={AZURE_OPENAI_API_VERSION}"
            )
            headers["api-key"] = self.azure_api_key
            return url, headers
        if not self.api_key:
            raise ConfigurationError(
                "OpenAI API key not configured: set OPENAI_API_KEY (or AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_API_KEY)",
                error="OpenAI API key not configured",
            )
        headers["Authorization"] = f"Bearer {self.api_key}"
        return f"{self.base_url}/chat/completions", headers

    def build_payload(self, image_url: str) -> Dict[str, Any]:
        payload = {
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": GEOGLYPH_EVALUATION_PROMPT},
                        {"type": "image_url", "image_url": {"url": image_url, "detail": "high"}},
                    ],
                }
            ],
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }
        if not self.uses_azure:
            payload["model"] = self.model
        return payload

    async def classify(self, image_url: str) -> ValidationResult:
        """Ask the model whether ``image_url`` shows a plausible archaeological feature."""
        image_url = check_image_reference(image_url)
        url, headers = self._endpoint_and_headers()
        payload = self.build_payload(image_url)

        target = f"Azure deployment {self.azure_deployment}" if self.uses_azure else self.model
        logger.info(f"[EYE] Classifying image ({len(image_url) / 1024:.1f} KB reference) with {target}")

        start = time.time()
        try:
            async with self._session_factory(self.timeout) as http_session:
                async with http_session.post(url, headers=headers, json=payload) as resp:
                    if resp.status != 200:
                        error_text = await resp.text()
                        logger.error(f"[FAIL] Vision API error {resp.status}: {error_text[:300]}")
                        raise UpstreamError(
                            f"Vision model request failed ({resp.status}): {error_text[:500]}",
                            error="Failed to validate image",
                            upstream_status=resp.status,
                            body=error_text,
                        )
                    try:
                        result = await resp.json(content_type=None)
                    except ValueError as e:
                        raise DataShapeError(f"Vision API returned a non-JSON body: {e}") from e
        except asyncio.TimeoutError as e:
            elapsed = time.time() - start
            logger.error(f"[FAIL] Vision request timed out after {elapsed:.1f}s")
            raise UpstreamTimeoutError(f"Vision model timed out after {elapsed:.1f}s") from e
        except aiohttp.ClientError as e:
            logger.error(f"[FAIL] Vision transport error: {e}")
            raise UpstreamError(f"Vision model request failed: {e}", error="Failed to validate image") from e

        try:
            content = result["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None

        verdict = parse_validation_result(content)
        logger.info(
            f"[OK] Vision verdict isValid={verdict.is_valid} confidence={verdict.confidence:.0f} "
            f"features={len(verdict.features)} ({time.time() - start:.2f}s)"
        )
        return verdict


# ============================================================================
# SINGLETON
# ============================================================================

_geoglyph_vision_agent: Optional[GeoglyphVisionAgent] = None


def get_vision_agent() -> GeoglyphVisionAgent:
    """Get the singleton GeoglyphVisionAgent built from the app configuration."""
    global _geoglyph_vision_agent
    if _geoglyph_vision_agent is None:
        from app_config import app_cfg
        _geoglyph_vision_agent = GeoglyphVisionAgent.from_config(app_cfg)
    return _geoglyph_vision_agent
