import io
import logging

from pdfminer.high_level import extract_text
from pdfminer.pdfparser import PDFSyntaxError

from invoicex.exceptions import TextExtractionError

logger = logging.getLogger(__name__)

EMPTY_TEXT_MESSAGE = (
    "PDF contains no extractable text. The document may be an image-based scan."
)


class PDFTextExtractor:
    """Extracts plain text from PDF bytes with pdfminer"""

    def extract(self, data: bytes) -> str:
        """
        Extract text from a PDF

        Args:
            data: PDF file content

        Returns:
            Extracted text, stripped

        Raises:
            TextExtractionError: If pdfminer fails or the text is empty
        """
        try:
            text = extract_text(io.BytesIO(data))
        except PDFSyntaxError as e:
            raise TextExtractionError(f"PDF text extraction failed: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected pdfminer error: {e}")
            raise TextExtractionError(f"PDF text extraction failed: {e}") from e

        text = (text or '').strip()
        if not text:
            raise TextExtractionError(f"PDF text extraction failed: {EMPTY_TEXT_MESSAGE}")
        return text
