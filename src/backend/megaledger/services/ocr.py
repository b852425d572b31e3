"""
OCR service for reading payment receipts from screenshots.
"""

import io
import logging
import re
from typing import Optional

import pytesseract
from PIL import Image, ImageEnhance

from megaledger.config import settings

logger = logging.getLogger(__name__)


class OCRService:
    """Service for extracting text from receipt screenshots."""

    def __init__(self):
        """Initialize OCR service with Tesseract configuration."""
        pytesseract.pytesseract.tesseract_cmd = settings.TESSERACT_CMD

    def extract_text_from_image(self, image_data: bytes, mime_type: str) -> Optional[str]:
        """
        Extract text from a receipt screenshot using Tesseract OCR.

        Args:
            image_data: Raw image bytes (JPEG, PNG, etc.)
            mime_type: MIME type reported by the gateway

        Returns:
            Extracted text, or None when the payload is not an image or
            nothing legible was found
        """
        if not mime_type or not mime_type.startswith('image/'):
            logger.debug("Skipping non-image media", extra={"mime_type": mime_type})
            return None

        try:
            image = Image.open(io.BytesIO(image_data))
            image = self._preprocess_image(image)

            # Single uniform block of text suits SMS/app screenshots
            custom_config = r'--oem 3 --psm 6'
            text = pytesseract.image_to_string(image, config=custom_config)

        except Exception as e:
            logger.error("Error extracting text from image", extra={
                "mime_type": mime_type,
                "error": str(e)
            })
            return None

        text = self.normalize_text(text)
        return text or None

    def _preprocess_image(self, image: Image.Image) -> Image.Image:
        """
        Preprocess image to improve OCR accuracy.

        Args:
            image: PIL Image object

        Returns:
            Preprocessed image
        """
        try:
            if image.mode != 'RGB':
                image = image.convert('RGB')

            # Grayscale + contrast helps with dark-mode screenshots
            image = image.convert('L')
            enhancer = ImageEnhance.Contrast(image)
            image = enhancer.enhance(2.0)

            return image

        except Exception as e:
            logger.warning("Error preprocessing image", extra={"error": str(e)})
            return image

    def normalize_text(self, text: str) -> str:
        """
        Normalize OCR output line by line.

        Line breaks are kept: reference grammars anchor on line starts.
        """
        lines = []
        for line in text.splitlines():
            line = re.sub(r'[ \t]+', ' ', line).strip()
            line = line.replace('|', 'I')  # Common misread
            if line:
                lines.append(line)
        return '\n'.join(lines)
