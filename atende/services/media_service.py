"""Client for the media transcription / OCR collaborator."""

from typing import Optional

import httpx

from atende.config import settings
from atende.logging_config import get_logger

logger = get_logger("media_service")


class MediaExtractor:
    """Best-effort text for audio, images and documents.

    `extract` returns the text (possibly empty) when the collaborator
    answered, and None when it is not configured or failed.
    """

    def __init__(self, base_url: Optional[str] = None, timeout_seconds: Optional[float] = None):
        self.base_url = (base_url or settings.media_extractor_url or "").rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.media_extractor_timeout_seconds

    def extract(self, media_ref: dict) -> Optional[str]:
        if not self.base_url:
            logger.debug("Media extractor not configured")
            return None

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(f"{self.base_url}/extract", json=media_ref)
        except httpx.HTTPError as e:
            logger.error(f"Media extraction failed: {e}", extra={"context": {"media_kind": media_ref.get("media_kind")}})
            return None

        if response.status_code != 200:
            logger.error(
                "Media extractor rejected request",
                extra={"context": {"status": response.status_code, "body": response.text[:200]}},
            )
            return None

        try:
            data = response.json()
        except ValueError:
            logger.error("Media extractor returned a non-JSON body", extra={"context": {"body": response.text[:200]}})
            return None
        if not isinstance(data, dict):
            logger.error("Media extractor returned an unexpected payload", extra={"context": {"payload": str(data)[:200]}})
            return None

        text = (data.get("text") or "").strip()
        logger.info(f"Media extracted: kind={media_ref.get('media_kind')}, chars={len(text)}")
        return text
