"""
Standardised error handling for VidFriends media ingestion.
"""

from vidfriends.core.constants import ErrorCode, CANCELLATION_ERRORS


class MediaError(Exception):
    """Raised when metadata lookup or asset ingestion hits a known error condition."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")

    @property
    def cancellation(self) -> bool:
        return self.code in CANCELLATION_ERRORS


def is_cancellation(code: str) -> bool:
    return code in CANCELLATION_ERRORS


def provider_unavailable() -> MediaError:
    return MediaError(ErrorCode.PROVIDER_UNAVAILABLE, "video metadata provider unavailable")


def storage_unavailable(context: str = "") -> MediaError:
    message = "video asset storage unavailable"
    if context:
        message = f"{context}: {message}"
    return MediaError(ErrorCode.ASSET_STORAGE_UNAVAILABLE, message)
