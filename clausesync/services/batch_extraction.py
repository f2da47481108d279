"""
Batch Extraction Driver

Splits a single PDF, a general/particular PDF pair, or a pasted text pair
into chunks, runs the extraction collaborator once per chunk (strictly one
after another) and accumulates the clauses. Nothing is persisted here: the
accumulated list goes to finalize only after every chunk succeeded.
"""

import math
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from clausesync.config.config import Config
from clausesync.database.schemas import Clause
from clausesync.services.exceptions import ExtractionFailure

logger = logging.getLogger(__name__)

# Stage labels shown while a PDF batch runs; chosen by progress threshold
DOCUMENT_STAGES = [
    {"progress": 10, "label": "Scanning Pages...", "sub": "Mapping document layers"},
    {"progress": 30, "label": "Verbatim Extraction...", "sub": "Processing batch sequences"},
    {"progress": 60, "label": "Validating Text Integrity...", "sub": "Word-for-word check"},
    {"progress": 90, "label": "Finalizing Records...", "sub": "Syncing clause ledger"},
]

# Pasted text has no page count, so progress moves through fixed stages
TEXT_STAGES = [
    {"progress": 20, "label": "Direct Injection...", "sub": "Bypassing extraction layers"},
    {"progress": 50, "label": "Rapid Mapping...", "sub": "Analyzing verbatim strings"},
    {"progress": 85, "label": "Validating Ledger...", "sub": "Confirming condition types"},
    {"progress": 100, "label": "Ready", "sub": "Finalizing"},
]


@dataclass
class ExtractionProgress:
    percent: int
    current: int
    total: int
    label: str = ""
    sub: str = ""


ProgressCallback = Callable[[ExtractionProgress], None]


class Extractor(Protocol):
    async def analyze(self, source: Any) -> List[Clause]: ...


class PageExtractor(Protocol):
    async def extract_pages(self, document: Any) -> List[str]: ...


def stage_for(percent: int, stages: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Highest stage whose threshold the progress has reached"""
    reached = [stage for stage in stages if percent >= stage["progress"]]
    return reached[-1] if reached else stages[0]


class BatchExtractionDriver:
    """Runs the extraction collaborator chunk by chunk with progress reporting"""

    def __init__(self, extractor: Extractor, page_extractor: PageExtractor, chunk_pages: int = None):
        self.extractor = extractor
        self.page_extractor = page_extractor
        self.chunk_pages = chunk_pages or Config.CHUNK_PAGES
        if self.chunk_pages <= 0:
            raise ValueError("chunk_pages must be greater than 0")

    async def extract_document(self, document: Any, on_progress: Optional[ProgressCallback] = None) -> List[Clause]:
        """One extraction call per page; progress = pages done / total pages"""
        self._report(on_progress, 5, 0, 0, DOCUMENT_STAGES)
        pages = await self.page_extractor.extract_pages(document)
        total = len(pages)
        if total == 0:
            raise ExtractionFailure("No pages found in document")

        logger.info(f"[Batch] Processing {total} pages")
        accumulated: List[Clause] = []
        for index, page_text in enumerate(pages):
            result = await self._analyze(page_text, f"page {index + 1}/{total}")
            accumulated.extend(result)
            self._report(on_progress, math.floor((index + 1) / total * 100), index + 1, total, DOCUMENT_STAGES)

        logger.info(f"[OK] Batch complete: {len(accumulated)} clauses from {total} pages")
        return accumulated

    async def extract_dual_documents(
        self,
        general: Any,
        particular: Any,
        on_progress: Optional[ProgressCallback] = None
    ) -> List[Clause]:
        """One extraction call per paired chunk; progress = chunks done / total chunks"""
        self._report(on_progress, 5, 0, 0, DOCUMENT_STAGES)
        general_pages = await self.page_extractor.extract_pages(general)
        particular_pages = await self.page_extractor.extract_pages(particular)

        chunks = self.build_dual_chunks(general_pages, particular_pages)
        total = len(chunks)
        if total == 0:
            raise ExtractionFailure("No pages found in either document")

        logger.info(f"[Batch] Processing {total} paired chunks "
                    f"({len(general_pages)} general / {len(particular_pages)} particular pages)")
        accumulated: List[Clause] = []
        for index, chunk in enumerate(chunks):
            result = await self._analyze(chunk, f"chunk {index + 1}/{total}")
            accumulated.extend(result)
            self._report(on_progress, math.floor((index + 1) / total * 100), index + 1, total, DOCUMENT_STAGES)

        logger.info(f"[OK] Dual batch complete: {len(accumulated)} clauses from {total} chunks")
        return accumulated

    async def extract_text(
        self,
        general: str,
        particular: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> List[Clause]:
        """Single call, no chunking; progress walks the fixed text stages"""
        self._report(on_progress, TEXT_STAGES[0]["progress"], 1, 1, TEXT_STAGES)
        result = await self._analyze({"general": general, "particular": particular}, "pasted text")
        self._report(on_progress, TEXT_STAGES[2]["progress"], 1, 1, TEXT_STAGES)
        self._report(on_progress, TEXT_STAGES[3]["progress"], 1, 1, TEXT_STAGES)
        return list(result)

    def build_dual_chunks(self, general_pages: List[str], particular_pages: List[str]) -> List[Dict[str, str]]:
        """
        Pair up to chunk_pages pages from each side

        Example (chunk_pages=2), 5 general pages, 3 particular pages:
            - Chunk 1: general 1-2 | particular 1-2
            - Chunk 2: general 3-4 | particular 3
            - Chunk 3: general 5   | particular (empty)
        """
        size = self.chunk_pages
        total = math.ceil(max(len(general_pages), len(particular_pages)) / size)
        return [
            {
                "general": "\n\n".join(general_pages[b * size:(b + 1) * size]),
                "particular": "\n\n".join(particular_pages[b * size:(b + 1) * size]),
            }
            for b in range(total)
        ]

    async def _analyze(self, source: Any, label: str) -> List[Clause]:
        try:
            return await self.extractor.analyze(source)
        except ExtractionFailure:
            logger.error(f"[!] Extraction failed on {label}; batch aborted")
            raise
        except Exception as e:
            logger.error(f"[!] Extraction failed on {label}: {e}; batch aborted")
            raise ExtractionFailure(str(e)) from e

    @staticmethod
    def _report(on_progress, percent: int, current: int, total: int, stages) -> None:
        if on_progress is None:
            return
        stage = stage_for(percent, stages)
        on_progress(ExtractionProgress(
            percent=percent,
            current=current,
            total=total,
            label=stage["label"],
            sub=stage["sub"],
        ))
