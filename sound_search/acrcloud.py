"""
ACRCloud Recognition Module

Identifies a recording via the ACRCloud identify API.
Credentials loaded from environment variables (see config.ACRCLOUD).

Every call is an independent signed request: no retry, no backoff and no
internal timeout. identify() never raises; it returns a SongResult or a
RecognitionError describing what went wrong.
"""

import base64
import hashlib
import hmac
import time
from dataclasses import dataclass, field
from typing import Optional, List, Union, Dict, Any

import requests

from logging_config import get_logger
from .errors import (
    RecognitionError,
    NoAudioProvided,
    CredentialsMissing,
    UpstreamRejected,
    NotFound,
    TransportFailure,
)
from .formats import DEFAULT_MIME_TYPE, upload_filename
from .helpers import run_in_daemon_executor
from .wav import EncodedAudio

logger = get_logger(__name__)

HTTP_METHOD = "POST"
HTTP_URI = "/v1/identify"
DATA_TYPE = "audio"
SIGNATURE_VERSION = "1"

DEFAULT_MIN_SAMPLE_BYTES = 50000  # ~5-10 seconds of audio
UNKNOWN_ARTIST = "Unknown Artist"

# ACRCloud status codes with actionable guidance; other codes pass through
STATUS_MESSAGES = {
    1001: "Song not recognized. Try a different part of the song or a more popular track.",
    2004: "No music detected in the recording. Play a song loudly near your microphone and try again.",
    3001: "ACRCloud rejected the access key. Check the configured credentials.",
    3003: "ACRCloud request limit exceeded. Try again later.",
    3014: "ACRCloud rejected the request signature. Check the access secret and the system clock.",
    3015: "Too many requests to ACRCloud. Wait a moment and try again.",
}

SPOTIFY_TRACK_URL = "https://open.spotify.com/track/{track_id}"
SPOTIFY_SEARCH_URL = "https://www.spotify.com/search/{isrc}"

IdentifyOutcome = Union['SongResult', RecognitionError]


@dataclass(frozen=True)
class ACRCloudCredentials:
    """ACRCloud project credentials."""
    access_key: str
    access_secret: str = field(repr=False)
    host: str

    @classmethod
    def from_config(cls) -> 'ACRCloudCredentials':
        from config import ACRCLOUD
        return cls(
            access_key=ACRCLOUD.get("access_key") or "",
            access_secret=ACRCLOUD.get("access_secret") or "",
            host=ACRCLOUD.get("host") or "",
        )

    def missing(self) -> List[str]:
        """Names of the credentials that are not set."""
        return [
            name for name in ("access_key", "access_secret", "host")
            if not getattr(self, name)
        ]

    def is_complete(self) -> bool:
        return not self.missing()


@dataclass(frozen=True)
class SignedRequest:
    """Signature fields for one outbound identify call."""
    timestamp: str
    access_key: str
    signature: str
    data_type: str = DATA_TYPE
    signature_version: str = SIGNATURE_VERSION
    http_method: str = HTTP_METHOD
    http_uri: str = HTTP_URI

    def to_form_fields(self, sample_bytes: int) -> Dict[str, str]:
        """Non-file multipart fields for the identify request."""
        return {
            'access_key': self.access_key,
            'data_type': self.data_type,
            'signature_version': self.signature_version,
            'signature': self.signature,
            'sample_bytes': str(sample_bytes),
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class SongResult:
    """
    Normalized recognition result from the first ACRCloud music candidate.

    Attributes:
        title: Song title
        artist: First listed artist ("Unknown Artist" if absent)
        album: Album name
        album_art: Album cover URL
        release_date: Release date as reported upstream
        external_url: Spotify track link, else Spotify ISRC search link
        isrc: International Standard Recording Code
        track_id: ACRCloud's track identifier (acrid)
        duration: Track duration in seconds
        score: Match score (0-100)
    """
    title: str
    artist: str = UNKNOWN_ARTIST
    album: Optional[str] = None
    album_art: Optional[str] = None
    release_date: Optional[str] = None
    external_url: Optional[str] = None
    isrc: Optional[str] = None
    track_id: Optional[str] = None
    duration: Optional[float] = None
    score: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Shape consumed by the result card (unset fields omitted)."""
        data = {
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "albumArt": self.album_art,
            "releaseDate": self.release_date,
            "externalUrl": self.external_url,
        }
        return {k: v for k, v in data.items() if v is not None}

    def __str__(self) -> str:
        return f"{self.artist} - {self.title}"


def create_signature(
    access_secret: str,
    access_key: str,
    timestamp: str,
    http_method: str = HTTP_METHOD,
    http_uri: str = HTTP_URI,
    data_type: str = DATA_TYPE,
    signature_version: str = SIGNATURE_VERSION
) -> str:
    """
    Create HMAC-SHA1 signature for ACRCloud API.

    The string to sign is method, URI, access key, data type, signature
    version and timestamp joined by newlines, in that order.

    Returns:
        Base64-encoded digest
    """
    string_to_sign = "\n".join([
        http_method,
        http_uri,
        access_key,
        data_type,
        signature_version,
        timestamp,
    ])

    return base64.b64encode(
        hmac.new(
            access_secret.encode('utf-8'),
            string_to_sign.encode('utf-8'),
            digestmod=hashlib.sha1
        ).digest()
    ).decode('ascii')


def sign_request(credentials: ACRCloudCredentials, timestamp: Optional[str] = None) -> SignedRequest:
    """Sign a new identify request (timestamp defaults to now, unix seconds)."""
    timestamp = timestamp or str(int(time.time()))
    return SignedRequest(
        timestamp=timestamp,
        access_key=credentials.access_key,
        signature=create_signature(credentials.access_secret, credentials.access_key, timestamp),
    )


def build_external_url(track: Dict[str, Any]) -> Optional[str]:
    """
    Link for a track: Spotify track id first, then ISRC search, else None.
    """
    spotify = (track.get('external_metadata') or {}).get('spotify') or {}
    spotify_id = (spotify.get('track') or {}).get('id')
    if spotify_id:
        return SPOTIFY_TRACK_URL.format(track_id=spotify_id)

    isrc = (track.get('external_ids') or {}).get('isrc')
    if isrc:
        return SPOTIFY_SEARCH_URL.format(isrc=isrc)

    return None


def parse_identify_response(result: Any) -> IdentifyOutcome:
    """
    Normalize an ACRCloud identify response.

    Args:
        result: Decoded JSON body

    Returns:
        SongResult, UpstreamRejected, NotFound or TransportFailure
    """
    if not isinstance(result, dict):
        return TransportFailure(f"Malformed ACRCloud response: expected object, got {type(result).__name__}")

    status = result.get('status') or {}
    code = status.get('code')
    if code != 0:
        message = STATUS_MESSAGES.get(code) or status.get('msg') or None
        logger.warning(f"ACRCloud rejected sample: code={code} msg={status.get('msg', 'Unknown')}")
        return UpstreamRejected(code, message)

    metadata = result.get('metadata') or {}
    music = metadata.get('music') or []
    if not music:
        logger.info("ACRCloud: No music in response")
        return NotFound()

    # Use first (best) match
    track = music[0]
    title = track.get('title')
    if not title:
        logger.warning("ACRCloud: First candidate has no title")
        return NotFound()

    artists = track.get('artists') or []
    artist = (artists[0].get('name') if artists else None) or UNKNOWN_ARTIST
    album_info = track.get('album') or {}

    duration_ms = track.get('duration_ms')
    duration = duration_ms / 1000.0 if duration_ms else None

    return SongResult(
        title=title,
        artist=artist,
        album=album_info.get('name'),
        album_art=album_info.get('cover') or None,
        release_date=track.get('release_date'),
        external_url=build_external_url(track),
        isrc=(track.get('external_ids') or {}).get('isrc'),
        track_id=track.get('acrid'),
        duration=duration,
        score=track.get('score'),
    )


class ACRCloudClient:
    """
    Sends recordings to ACRCloud and normalizes the answer.

    Stateless across calls. Callers wanting retries or a timeout wrap
    identify() themselves (e.g. asyncio.wait_for).
    """

    def __init__(
        self,
        credentials: Optional[ACRCloudCredentials] = None,
        min_sample_bytes: Optional[int] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the client.

        Args:
            credentials: ACRCloud credentials (default: from config.ACRCLOUD)
            min_sample_bytes: Smallest accepted recording (default: config, 50000)
            session: requests session to send with (default: requests module)
        """
        if min_sample_bytes is None:
            from config import ACRCLOUD
            min_sample_bytes = ACRCLOUD.get("min_sample_bytes", DEFAULT_MIN_SAMPLE_BYTES)

        self.credentials = credentials or ACRCloudCredentials.from_config()
        self.min_sample_bytes = min_sample_bytes
        self._http = session or requests

        if self.credentials.is_complete():
            logger.info(f"ACRCloud initialized (host: {self.credentials.host})")
        else:
            logger.debug(f"ACRCloud not configured (missing: {', '.join(self.credentials.missing())})")

    def is_available(self) -> bool:
        """Check if ACRCloud is configured."""
        return self.credentials.is_complete()

    @property
    def url(self) -> str:
        return f"https://{self.credentials.host}{HTTP_URI}"

    def validate(self, audio: Optional[EncodedAudio]) -> Optional[RecognitionError]:
        """
        Check request preconditions without touching the network.

        Returns:
            NoAudioProvided / CredentialsMissing, or None if the request may proceed
        """
        if audio is None or not audio.data:
            logger.error("No audio file provided")
            return NoAudioProvided()

        if audio.size_bytes < self.min_sample_bytes:
            logger.error(f"Audio file too small: {audio.size_bytes} bytes")
            return NoAudioProvided(
                "Recording too short. Please record at least 5-10 seconds of clear audio."
            )

        missing = self.credentials.missing()
        if missing:
            logger.error(f"Missing ACRCloud credentials: {', '.join(missing)}")
            return CredentialsMissing()

        return None

    async def identify(self, audio: Optional[EncodedAudio]) -> IdentifyOutcome:
        """
        Recognize a song using ACRCloud.

        Args:
            audio: Finished recording

        Returns:
            SongResult on a match, otherwise a RecognitionError
        """
        error = self.validate(audio)
        if error is not None:
            return error

        return await run_in_daemon_executor(self._identify_sync, audio)

    def _identify_sync(self, audio: EncodedAudio) -> IdentifyOutcome:
        """Sign, upload and parse. Blocking; runs in the executor."""
        signed = sign_request(self.credentials)

        content_type = audio.mime_type or DEFAULT_MIME_TYPE
        filename = audio.filename or upload_filename(content_type)
        files = {
            'sample': (filename, audio.data, content_type),
        }
        data = signed.to_form_fields(audio.size_bytes)

        logger.info(
            f"Sending to ACRCloud ({audio.size_bytes / 1024:.1f} KB, {content_type}, "
            f"key {self.credentials.access_key[:4]}..., ts {signed.timestamp})"
        )

        try:
            response = self._http.post(self.url, files=files, data=data)
            result = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"ACRCloud request failed: {e}")
            return TransportFailure(str(e) or "ACRCloud request failed")
        except ValueError as e:
            # Body was not JSON (requests.JSONDecodeError subclasses ValueError)
            logger.error(f"ACRCloud returned invalid JSON: {e}")
            return TransportFailure(f"Invalid response from ACRCloud: {e}")

        logger.debug(f"ACRCloud response: {result}")

        try:
            outcome = parse_identify_response(result)
        except (AttributeError, TypeError, KeyError, IndexError) as e:
            logger.error(f"ACRCloud response has unexpected shape: {e}")
            return TransportFailure(f"Malformed ACRCloud response: {e}")

        if isinstance(outcome, SongResult):
            logger.info(f"ACRCloud recognized: {outcome}")
        return outcome
