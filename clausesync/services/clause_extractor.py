"""
Clause Extraction using Gemini
Turns one page (or a general/particular pair of chunks) into structured clauses
"""

import google.generativeai as genai
import json
import asyncio
import logging
from typing import Any, Dict, List, Union

from pydantic import ValidationError as SchemaError

from clausesync.config.config import Config
from clausesync.database.schemas import Clause
from clausesync.services.exceptions import ExtractionFailure

logger = logging.getLogger(__name__)

ExtractionInput = Union[str, Dict[str, str]]

QUOTA_MARKERS = ['quota', 'rate limit', '429', 'resource exhausted']


def strip_code_fences(result_text: str) -> str:
    """Remove the ```json fences models like to wrap JSON in"""
    result_text = result_text.strip()
    if result_text.startswith("```json"):
        result_text = result_text[7:]
    if result_text.startswith("```"):
        result_text = result_text[3:]
    if result_text.endswith("```"):
        result_text = result_text[:-3]
    return result_text.strip()


def parse_clause_payload(result_text: str) -> List[Clause]:
    """Accept either a bare clause array or {"clauses": [...]}"""
    data = json.loads(strip_code_fences(result_text))
    if isinstance(data, dict):
        data = data.get("clauses", [])
    if not isinstance(data, list):
        raise ValueError("Model response is not a clause list")
    return [Clause.model_validate(item) for item in data if isinstance(item, dict)]


class ClauseExtractor:
    """Extraction collaborator: analyze(input) -> Clause[]"""

    def __init__(self, api_key: str = None, model_name: str = None):
        api_key = api_key or Config.GEMINI_API_KEY
        if not api_key:
            raise ValueError("GEMINI_API_KEY not set!")

        genai.configure(api_key=api_key)
        self.model_name = model_name or Config.GEMINI_MODEL
        self.model = genai.GenerativeModel(self.model_name)

        self.request_delay = Config.GEMINI_REQUEST_DELAY
        self.max_retries = Config.MAX_RETRIES
        self.retry_delay = Config.RETRY_DELAY

        logger.info(f"[OK] ClauseExtractor initialized (model: {self.model_name})")

    async def analyze(self, source: ExtractionInput) -> List[Clause]:
        """
        Extract clauses from one text block or a {general, particular} pair

        Raises ExtractionFailure with a readable message once retries are exhausted.
        """
        prompt = self._create_prompt(source)
        last_error = "unknown error"

        for attempt in range(1, self.max_retries + 1):
            try:
                await asyncio.sleep(self.request_delay)

                response = await self.model.generate_content_async(
                    prompt,
                    generation_config={"response_mime_type": "application/json", "temperature": 0.0},
                )
                clauses = parse_clause_payload(response.text)
                logger.info(f"    [OK] Extracted {len(clauses)} clauses (attempt {attempt})")
                return clauses

            except (json.JSONDecodeError, ValueError, SchemaError) as e:
                last_error = f"Malformed extraction response: {e}"
                logger.warning(f"    [!] JSON error (attempt {attempt}): {e}")
                if attempt < self.max_retries:
                    await asyncio.sleep(self._backoff(attempt))

            except Exception as e:
                last_error = str(e)
                error_msg = last_error.lower()

                if any(kw in error_msg for kw in QUOTA_MARKERS):
                    logger.warning(f"    [!] Quota error (attempt {attempt})")
                    if attempt < self.max_retries:
                        wait = self._backoff(attempt) * 3
                        logger.info(f"    [i] Waiting {wait}s...")
                        await asyncio.sleep(wait)
                else:
                    logger.error(f"    [!] Extraction error: {e}")
                    if attempt < self.max_retries:
                        await asyncio.sleep(self._backoff(attempt))

        raise ExtractionFailure(f"Clause extraction failed after {self.max_retries} attempts: {last_error}")

    def _backoff(self, attempt: int) -> float:
        if Config.EXPONENTIAL_BACKOFF:
            return self.retry_delay * (2 ** (attempt - 1))
        return self.retry_delay

    def _create_prompt(self, source: ExtractionInput) -> str:
        """Prompt for a single source, or for the general/particular pair"""
        if isinstance(source, dict):
            body = f"""GENERAL CONDITIONS (baseline):
{source.get('general', '')}

PARTICULAR CONDITIONS (project-specific amendments):
{source.get('particular', '')}

For every clause number that appears in either source, emit ONE clause:
- general_condition: verbatim general text ("" if absent)
- particular_condition: verbatim particular text ("" if absent)
- clause_text: the particular text when present, else the general text
- condition_type: "Particular" when particular text exists, else "General"
- comparison: list of discrepancies between the two versions, each
  {{"field": "...", "general": "...", "particular": "...", "note": "..."}}
  (empty list when identical or only one side exists)"""
        else:
            body = f"""CONTRACT TEXT:
{source}

For every clause, emit:
- clause_text: verbatim text
- condition_type: "General" unless the page is explicitly particular conditions
- comparison: []"""

        return f"""You are a verbatim extraction system for construction contracts (FIDIC style).
Extract EXACTLY what is in the text. NEVER reword, summarise or invent clauses.

{body}

Common fields for every clause:
- clause_number: the number exactly as printed, e.g. "4.2" or "8.1(a)"
- clause_title: the printed heading ("Untitled" if none)
- time_frames: every temporal obligation, each
  {{"duration": "28 days", "trigger": "...", "obligation": "..."}}

Return ONLY valid JSON (no markdown):
{{"clauses": [{{"clause_number": "", "clause_title": "", "clause_text": "",
  "condition_type": "General", "general_condition": "", "particular_condition": "",
  "comparison": [], "time_frames": []}}]}}
"""
