"""Builds the extraction and refinement requests sent to the analysis oracle."""

import json
import logging
from typing import Dict, List, Optional

from .models import RawOracleOutput, Taxonomy, Transcript
from .usage_statistics import DiversityPolicy, UsageSnapshot

logger = logging.getLogger(__name__)


MAX_TRANSCRIPT_CHARS = 6000
TRUNCATION_MARKER = "[CONTENT TRUNCATED FOR ANALYSIS]"
DEFAULT_AVOID_LIMIT = 5
DEFAULT_PREFER_LIMIT = 10

OUTPUT_SCHEMA = """{{
  "themes": ["3-5 specific theme names that best capture unique aspects"],
  "theme_justifications": ["for each theme, why it was chosen and how it relates to this story"],
  "emotions": ["3-6 specific emotions expressed, avoid generic terms"],
  "topics": ["4-8 specific topics or events discussed"],
  "quotes": ["2-4 powerful direct quotes from the transcript"],
  "summary": "2-3 sentences on what makes this story unique",
  "insights": ["3-5 insights or lessons specific to this storyteller"],
  "cultural_elements": ["cultural, ethnic, geographic or community references"],
  "sensitivity_flags": ["content requiring careful handling, e.g. trauma or violence"],
  "confidence_score": 0.85,
  "quality_score": 0.90
}}"""


class PromptComposer:
    """Pure text construction for oracle requests; never touches the network."""

    def __init__(self,
                 policy: Optional[DiversityPolicy] = None,
                 max_transcript_chars: int = MAX_TRANSCRIPT_CHARS,
                 avoid_limit: int = DEFAULT_AVOID_LIMIT,
                 prefer_limit: int = DEFAULT_PREFER_LIMIT):
        self.policy = policy or DiversityPolicy.by_count()
        self.max_transcript_chars = max_transcript_chars
        self.avoid_limit = avoid_limit
        self.prefer_limit = prefer_limit
        self.prompts = self._load_prompts()

    def _load_prompts(self) -> Dict[str, str]:
        """Load prompt templates."""
        return {
            "extract": """You are an expert narrative analyst specializing in community storytelling, cultural sensitivity, and thematic diversity. Your goal is to identify the MOST SPECIFIC and DIVERSE themes that capture the unique aspects of this person's story.

CRITICAL INSTRUCTIONS FOR THEME DIVERSITY:
1. AVOID OVERUSED THEMES: These themes are used too frequently and should only be chosen if they are absolutely central to the story: {avoid_list}
2. PRIORITIZE SPECIFIC THEMES: Look for specific life experiences, cultural elements, professional contexts, or unique circumstances
3. ENCOURAGE UNDERUSED THEMES: Consider these less common but valuable themes: {prefer_list}
4. SEEK SOPHISTICATION: Move beyond generic themes to capture the storyteller's unique experience

STORYTELLER: {storyteller_name}

AVAILABLE THEMES TO CHOOSE FROM:
{theme_context}

TRANSCRIPT TO ANALYZE:
{transcript}

ANALYSIS INSTRUCTIONS:
1. Read the transcript carefully for specific details, contexts, and unique experiences
2. Select 3-5 themes from the available themes that are SPECIFIC to this storyteller, DIVERSE across categories, and UNDERREPRESENTED in the current collection
3. Use the exact theme names from the list above wherever possible
4. Be trauma-informed and culturally respectful; focus on strengths rather than deficits

Return ONLY valid JSON matching this structure:
""" + OUTPUT_SCHEMA,

            "refine": """Review and refine this thematic analysis for greater diversity and specificity.

ORIGINAL ANALYSIS:
{prior_result}

DIVERSITY IMPROVEMENT INSTRUCTIONS:
1. Are the themes sufficiently diverse across categories?
2. Are any themes too generic and could be made more specific?
3. Are there unique aspects of the story that weren't captured?
4. Could any themes be replaced with more specific alternatives from the available themes?

The original request, including the available themes and the transcript, follows for reference:
---
{original_prompt}
---

Provide an improved analysis with more diverse and specific themes. Return ONLY valid JSON in the same format:
""" + OUTPUT_SCHEMA,
        }

    def truncate_transcript(self, text: str) -> str:
        """Bound the transcript length, appending a marker when cut."""
        if len(text) <= self.max_transcript_chars:
            return text
        return text[:self.max_transcript_chars] + "\n" + TRUNCATION_MARKER

    def format_theme_context(self, taxonomy: Taxonomy) -> str:
        """Active themes grouped by category with descriptions."""
        sections = []
        for category, themes in taxonomy.grouped_by_category().items():
            lines = [f"{t.name}: {t.description}" if t.description else t.name for t in themes]
            sections.append(f"{category.upper()}:\n   " + "\n   ".join(lines))
        return "\n\n".join(sections)

    def avoid_names(self, taxonomy: Taxonomy, usage: UsageSnapshot) -> List[str]:
        return [taxonomy.name_of(s.theme_id)
                for s in usage.overused(taxonomy, self.policy, limit=self.avoid_limit)]

    def prefer_names(self, taxonomy: Taxonomy, usage: UsageSnapshot) -> List[str]:
        return [taxonomy.name_of(s.theme_id)
                for s in usage.underused(taxonomy, self.policy, limit=self.prefer_limit)]

    def compose(self,
                transcript_text: str,
                storyteller_name: Optional[str],
                taxonomy: Taxonomy,
                usage: UsageSnapshot) -> str:
        """Compose the first-pass extraction request."""
        taxonomy = taxonomy.active()
        avoid = self.avoid_names(taxonomy, usage)
        prefer = self.prefer_names(taxonomy, usage)

        return self.prompts["extract"].format(
            avoid_list=", ".join(avoid) if avoid else "none",
            prefer_list=", ".join(prefer) if prefer else "none",
            storyteller_name=storyteller_name or "Unknown",
            theme_context=self.format_theme_context(taxonomy),
            transcript=self.truncate_transcript(transcript_text),
        )

    def compose_for_transcript(self, transcript: Transcript, taxonomy: Taxonomy,
                               usage: UsageSnapshot) -> str:
        return self.compose(transcript.text, transcript.storyteller_name, taxonomy, usage)

    def compose_refinement(self, prior_result: RawOracleOutput, original_prompt: str) -> str:
        """Compose the second-pass request that critiques the first result."""
        return self.prompts["refine"].format(
            prior_result=json.dumps(prior_result.to_dict(), indent=2),
            original_prompt=original_prompt,
        )
