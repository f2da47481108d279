import fitz  # PyMuPDF
import logging
from pathlib import Path
from typing import List, Union

from clausesync.services.exceptions import ExtractionFailure

logger = logging.getLogger(__name__)

DocumentSource = Union[str, Path, bytes]


class PDFTextExtractor:
    """Reads the text layer of a PDF, one string per page in page order"""

    async def extract_pages(self, document: DocumentSource) -> List[str]:
        """
        Extract page-level text

        Args:
            document: Path to a PDF file or the raw PDF bytes

        Returns:
            One entry per page, each prefixed with a "--- PAGE n ---" marker
        """
        pages = []

        try:
            if isinstance(document, (bytes, bytearray)):
                doc = fitz.open(stream=bytes(document), filetype="pdf")
            else:
                doc = fitz.open(str(document))

            try:
                for page_num, page in enumerate(doc, start=1):
                    # sort=True orders blocks top-to-bottom, left-to-right
                    text = page.get_text("text", sort=True)
                    pages.append(f"--- PAGE {page_num} ---\n{text}")
            finally:
                doc.close()

        except Exception as e:
            logger.error(f"[!] PDF text extraction failed: {e}")
            raise ExtractionFailure(f"PDF processing error: {str(e)}") from e

        logger.info(f"[OK] Extracted text from {len(pages)} pages")
        return pages
