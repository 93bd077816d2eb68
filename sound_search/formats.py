"""
Upload Format Policy

Picks the container MIME type for a recording from a configured preference
order, following an explicit fallback table instead of probing formats one
by one. Also derives upload filenames from MIME types.
"""

from typing import Iterable, List, Optional

from logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MIME_TYPE = "audio/webm"

# Preferred codec -> fallback codec. When a whole chain is unsupported the
# caller's default applies.
FALLBACKS = {
    "audio/mp4": "audio/webm;codecs=opus",
    "audio/webm;codecs=opus": "audio/webm",
    "audio/ogg;codecs=opus": "audio/webm",
    "audio/x-wav": "audio/wav",
}

DEFAULT_PREFERENCES = [
    "audio/wav",
    "audio/mp4",
    "audio/webm;codecs=opus",
    "audio/webm",
    "audio/ogg;codecs=opus",
]

EXTENSIONS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mp4": "mp4",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/flac": "flac",
}


def base_mime_type(mime_type: str) -> str:
    """Strip parameters: 'audio/webm;codecs=opus' -> 'audio/webm'."""
    return mime_type.split(';', 1)[0].strip().lower()


def fallback_chain(mime_type: str) -> List[str]:
    """Return mime_type followed by its fallbacks."""
    chain = [mime_type]
    seen = {mime_type}
    current = mime_type
    while current in FALLBACKS:
        current = FALLBACKS[current]
        if current in seen:
            break
        chain.append(current)
        seen.add(current)
    return chain


def negotiate_mime_type(
    supported: Iterable[str],
    preferences: Optional[Iterable[str]] = None,
    default: str = DEFAULT_MIME_TYPE
) -> str:
    """
    Choose the container format for a recording.

    Walks the preference order; each preference is tried together with its
    fallback chain, and the first supported entry wins. When nothing is
    supported the default is returned.

    Args:
        supported: MIME types the producer can emit
        preferences: Preference order (default: DEFAULT_PREFERENCES)
        default: Format used when no chain yields a supported type

    Returns:
        Selected MIME type
    """
    supported_set = {s.strip().lower() for s in supported}
    for preferred in (preferences or DEFAULT_PREFERENCES):
        for candidate in fallback_chain(preferred.strip().lower()):
            if candidate in supported_set:
                if candidate != preferred:
                    logger.debug(f"Format {preferred} unsupported, falling back to {candidate}")
                return candidate

    logger.debug(f"No preferred format supported, using default {default}")
    return default


def extension_for(mime_type: Optional[str]) -> str:
    """File extension for a MIME type (unknown types map to the default's)."""
    if mime_type:
        ext = EXTENSIONS.get(base_mime_type(mime_type))
        if ext:
            return ext
    return EXTENSIONS[DEFAULT_MIME_TYPE]


def upload_filename(mime_type: Optional[str], stem: str = "recording") -> str:
    return f"{stem}.{extension_for(mime_type)}"
