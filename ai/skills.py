"""Offline text analysis using the skill taxonomy, the capability framework and rapidfuzz.

Implements extraction with synonyms, word-boundary matching and fuzzy
matching, returning the same ``AnalysisResult`` as the analysis service.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from rapidfuzz import fuzz, process

from config.capability_framework import CAPABILITY_FRAMEWORK, FRAMEWORK_NAME
from config.skill_taxonomy import SKILL_TAXONOMY
from etl.config import AnalysisSettings

from .analysis import AnalysisResult, CapabilityCandidate, SkillCandidate

logger = logging.getLogger(__name__)


@dataclass
class ExtractedSkill:
    """Represents an extracted skill with evidence."""
    canonical_skill: str
    raw_text: str
    confidence: float
    category: str = ""
    evidence_text: str = ""
    method: str = "fuzzy"  # fuzzy, exact


@dataclass
class SkillTaxonomy:
    """Skill taxonomy entry with synonyms."""
    canonical_skill: str
    synonyms: list[str] = field(default_factory=list)
    category: str = ""


def _phrase_pattern(phrase: str) -> re.Pattern:
    return re.compile(r'(?<!\w)' + re.escape(phrase.lower()) + r'(?!\w)')


class TaxonomyAnalyzer:
    """Taxonomy-driven analyzer for when no analysis service is configured.

    Supports:
    - Exact synonym matching on word boundaries
    - Fuzzy matching of canonical names via rapidfuzz
    - Capability detection from framework cue phrases
    """

    def __init__(
        self,
        config: AnalysisSettings,
        taxonomy: list[SkillTaxonomy] | None = None,
        framework: list[dict] | None = None,
    ) -> None:
        self.config = config
        self.taxonomy = taxonomy or [
            SkillTaxonomy(entry["canonical_skill"], entry["synonyms"], entry["category"])
            for entry in SKILL_TAXONOMY
        ]
        self.framework = framework if framework is not None else CAPABILITY_FRAMEWORK

        self._categories: dict[str, str] = {}
        self._synonyms: list[tuple[re.Pattern, str, str]] = []  # (pattern, synonym, canonical)
        for tax in self.taxonomy:
            self._categories[tax.canonical_skill] = tax.category
            for syn in {tax.canonical_skill.lower(), *(s.lower() for s in tax.synonyms)}:
                self._synonyms.append((_phrase_pattern(syn), syn, tax.canonical_skill))

        logger.info(f"Loaded {len(self.taxonomy)} skills with {len(self._synonyms)} synonyms")

    def extract_skills(self, text: str) -> list[ExtractedSkill]:
        """Extract skills from text with evidence, best first."""
        if not text or not text.strip():
            return []

        results: list[ExtractedSkill] = []
        text_lower = text.lower()
        seen: set[str] = set()

        # 1. Exact synonym matching (highest confidence)
        for pattern, synonym, canonical in self._synonyms:
            if canonical in seen:
                continue
            match = pattern.search(text_lower)
            if match:
                start, end = match.span()
                results.append(ExtractedSkill(
                    canonical_skill=canonical,
                    raw_text=synonym,
                    confidence=0.95,
                    category=self._categories[canonical],
                    evidence_text=text[max(0, start - 30):end + 30].strip(),
                    method="exact",
                ))
                seen.add(canonical)

        # 2. Fuzzy matching on the remaining canonical names
        remaining = [tax.canonical_skill for tax in self.taxonomy if tax.canonical_skill not in seen]
        if remaining:
            matches = process.extract(
                text_lower,
                [name.lower() for name in remaining],
                scorer=fuzz.partial_ratio,
                limit=self.config.max_skills_per_doc,
            )
            for _, score, index in matches:
                if score < self.config.fuzzy_threshold:
                    continue
                canonical = remaining[index]
                results.append(ExtractedSkill(
                    canonical_skill=canonical,
                    raw_text=canonical.lower(),
                    confidence=score / 100.0,
                    category=self._categories[canonical],
                    method="fuzzy",
                ))
                seen.add(canonical)

        results.sort(key=lambda x: x.confidence, reverse=True)
        return results[:self.config.max_skills_per_doc]

    def extract_capabilities(self, text: str) -> list[CapabilityCandidate]:
        """Framework capabilities whose cue phrases occur in the text."""
        text_lower = text.lower()
        found = []
        for entry in self.framework:
            hits = [cue for cue in entry["cues"] if _phrase_pattern(cue).search(text_lower)]
            if hits:
                found.append(CapabilityCandidate(
                    name=entry["name"],
                    description=entry["description"],
                    relevance=min(1.0, len(hits) / len(entry["cues"]) + 0.25),
                ))
        return found

    async def analyze(self, text: str) -> AnalysisResult:
        if not text or not text.strip():
            return AnalysisResult()
        skills = self.extract_skills(text)
        capabilities = self.extract_capabilities(text)
        logger.debug(
            f"Taxonomy analysis ({FRAMEWORK_NAME}) found {len(capabilities)} capabilities "
            f"and {len(skills)} skills in {len(text)} chars"
        )
        return AnalysisResult(
            capabilities=capabilities,
            skills=[SkillCandidate(name=s.canonical_skill, category=s.category or None) for s in skills],
        )
