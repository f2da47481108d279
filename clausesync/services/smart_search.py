"""
Clause search

- filter_clauses / clause_groups: the local text / type / group filter
- SmartSearch: Gemini ranks the clauses of the active contract against a
  natural-language query and returns the top matches
"""

import json
import logging
import re
from typing import Iterable, List, Optional

import google.generativeai as genai

from clausesync.config.config import Config
from clausesync.database.schemas import Clause, SearchResult
from clausesync.services.clause_extractor import strip_code_fences
from clausesync.services.clause_ordering import KEY_PREFIX
from clausesync.services.exceptions import ExtractionFailure, ValidationError

logger = logging.getLogger(__name__)

OTHER_GROUP = "Other"
SNIPPET_LENGTH = 500
SEARCH_FAILED = "Search failed. Please try again."


def clause_group(clause: Clause) -> str:
    """Leading digits of the clause number, or "Other" """
    match = re.match(r"^\d+", clause.clause_number or "")
    return match.group(0) if match else OTHER_GROUP


def clause_groups(clauses: Iterable[Clause]) -> List[str]:
    """Distinct groups, numeric ones in numeric order, "Other" last"""
    groups = {clause_group(c) for c in clauses}
    numeric = sorted((g for g in groups if g != OTHER_GROUP), key=int)
    return numeric + ([OTHER_GROUP] if OTHER_GROUP in groups else [])


def filter_clauses(
    clauses: Iterable[Clause],
    text: str = "",
    types: Optional[Iterable[str]] = None,
    group: Optional[str] = None
) -> List[Clause]:
    """Case-insensitive match on number/title/text, restricted to condition types and a group"""
    needle = (text or "").lower()
    allowed = set(types) if types is not None else {"General", "Particular"}
    matched = []
    for clause in clauses:
        if needle and not (
            needle in clause.clause_number.lower()
            or needle in clause.clause_text.lower()
            or needle in clause.clause_title.lower()
        ):
            continue
        if clause.condition_type not in allowed:
            continue
        if group:
            if group == OTHER_GROUP:
                if clause_group(clause) != OTHER_GROUP:
                    continue
            elif not clause.clause_number.startswith(group):
                continue
        matched.append(clause)
    return matched


class SmartSearch:
    """Gemini-ranked semantic search over a clause list"""

    def __init__(self, api_key: str = None, model_name: str = None, limit: int = None):
        api_key = api_key or Config.GEMINI_API_KEY
        if not api_key:
            raise ValueError("GEMINI_API_KEY not set!")

        genai.configure(api_key=api_key)
        self.model_name = model_name or Config.GEMINI_MODEL
        self.model = genai.GenerativeModel(self.model_name)
        self.limit = limit or Config.SMART_SEARCH_LIMIT

    async def search(self, query: str, clauses: List[Clause]) -> List[SearchResult]:
        if not (query or "").strip():
            raise ValidationError("Search query is empty")
        if not clauses:
            return []

        prompt = self._create_prompt(query, clauses)
        try:
            response = await self.model.generate_content_async(
                prompt,
                generation_config={"response_mime_type": "application/json", "temperature": 0.0},
            )
            return self.parse_results(response.text)[:self.limit]
        except Exception as e:
            logger.error(f"[!] Smart search error: {e}")
            raise ExtractionFailure(SEARCH_FAILED) from e

    @staticmethod
    def parse_results(result_text: str) -> List[SearchResult]:
        data = json.loads(strip_code_fences(result_text))
        items = data.get("results", []) if isinstance(data, dict) else data
        results = [SearchResult.model_validate(item) for item in items if isinstance(item, dict)]
        return sorted(results, key=lambda r: r.relevance_score, reverse=True)

    def _create_prompt(self, query: str, clauses: List[Clause]) -> str:
        context = [
            {
                "clause_id": f"{KEY_PREFIX}{c.clause_number}",
                "clause_number": c.clause_number,
                "title": c.clause_title,
                "text": c.clause_text[:SNIPPET_LENGTH],
                "condition_type": c.condition_type,
            }
            for c in clauses
        ]
        return f"""You are the smart search engine of a contract department.
You receive a natural-language query and a list of contract clauses.
Select and rank the top {self.limit} clauses that best match the query by meaning and keywords.
Focus on construction contract concepts: time frames, payment, insurance, liability, termination.

Return ONLY a JSON object of this shape, no extra text:
{{
  "results": [
    {{
      "clause_id": "C.<number>",
      "clause_number": "<number>",
      "title": "<clause title>",
      "condition_type": "General or Particular",
      "relevance_score": 0.0,
      "reason": "<one sentence why it matches>"
    }}
  ]
}}

USER QUERY: "{query}"

CLAUSE DATA:
{json.dumps(context, ensure_ascii=False)}
"""
