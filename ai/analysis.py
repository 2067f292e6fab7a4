"""Text analysis collaborator: capability and skill candidates for a document.

``HttpTextAnalyzer`` posts text to an external analysis service;
``ai.skills.TaxonomyAnalyzer`` is the offline fallback.
"""
from __future__ import annotations

import logging
from typing import Protocol

import httpx
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from etl.config import AnalysisSettings
from etl.errors import AnalysisError

logger = logging.getLogger(__name__)

CAPABILITY_LEVELS = ("foundational", "intermediate", "adept", "advanced", "highly advanced")


class CapabilityCandidate(BaseModel):
    """Capability the analyzer found evidence for."""
    name: str = Field(min_length=1)
    level: str | None = None
    description: str | None = None
    relevance: float = Field(default=1.0, ge=0.0, le=1.0)
    capability_type: str = "core"

    @field_validator("level", mode="before")
    @classmethod
    def lower_level(cls, v):
        return v.strip().lower() if isinstance(v, str) and v.strip() else None


class SkillCandidate(BaseModel):
    """Skill the analyzer found evidence for."""
    name: str = Field(min_length=1)
    description: str | None = None
    category: str | None = None


class AnalysisResult(BaseModel):
    capabilities: list[CapabilityCandidate] = Field(default_factory=list)
    skills: list[SkillCandidate] = Field(default_factory=list)
    occupational_groups: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("occupational_groups", "occupationalGroups"),
    )
    focus_areas: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("focus_areas", "focusAreas"),
    )

    def merge(self, other: AnalysisResult) -> AnalysisResult:
        """Union of two results, deduplicated by case-folded name (first wins)."""
        return AnalysisResult(
            capabilities=_dedupe(self.capabilities + other.capabilities),
            skills=_dedupe(self.skills + other.skills),
            occupational_groups=list(dict.fromkeys(self.occupational_groups + other.occupational_groups)),
            focus_areas=list(dict.fromkeys(self.focus_areas + other.focus_areas)),
        )


def _dedupe(items: list) -> list:
    seen: dict = {}
    for item in items:
        seen.setdefault(item.name.strip().casefold(), item)
    return list(seen.values())


class TextAnalyzer(Protocol):
    """Anything that extracts capability and skill candidates from text."""

    async def analyze(self, text: str) -> AnalysisResult:
        ...


class HttpTextAnalyzer:
    """Client for an analysis service: POST ``{"text": ...}`` -> AnalysisResult JSON.

    Transport errors and 5xx responses are retried; anything still failing
    surfaces as AnalysisError.
    """

    def __init__(self, config: AnalysisSettings, client: httpx.AsyncClient | None = None) -> None:
        if not config.endpoint:
            raise ValueError("AnalysisSettings.endpoint is required for HttpTextAnalyzer")
        self.config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._post = retry(
            stop=stop_after_attempt(config.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((httpx.TransportError, httpx.HTTPStatusError)),
            reraise=True,
        )(self._post_once)

    async def _post_once(self, text: str) -> dict:
        response = await self._client.post(self.config.endpoint, json={"text": text})
        if response.status_code >= 500:
            response.raise_for_status()
        if response.status_code >= 400:
            raise AnalysisError(
                f"Analysis service rejected request: HTTP {response.status_code}",
                component="analyzer",
            )
        return response.json()

    async def analyze(self, text: str) -> AnalysisResult:
        if not text or not text.strip():
            return AnalysisResult()
        try:
            payload = await self._post(text)
        except httpx.HTTPError as e:
            logger.warning(f"Analysis service call failed: {e}")
            raise AnalysisError(f"Analysis service unavailable: {e}", component="analyzer") from e
        except ValueError as e:
            raise AnalysisError(f"Analysis service returned invalid JSON: {e}", component="analyzer") from e

        try:
            result = AnalysisResult.model_validate(payload)
        except ValidationError as e:
            raise AnalysisError(f"Malformed analysis response: {e}", component="analyzer") from e
        logger.debug(f"Analysis found {len(result.capabilities)} capabilities and {len(result.skills)} skills")
        return result

    async def aclose(self) -> None:
        await self._client.aclose()
