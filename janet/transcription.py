"""Voice-note transcription bridge.

WhatsApp voice notes arrive as Opus in an Ogg container, which the
transcription engine rejects. Those buffers go through the external audio
converter first (PCM s16le, mono, 16 kHz WAV), then to the engine.
"""

import logging
import time
from typing import Optional, Protocol

import httpx
from openai import AsyncOpenAI, OpenAIError

from janet.errors import ConversionError, TranscriptionError

logger = logging.getLogger(__name__)

CONVERTIBLE_TYPES = {"audio/ogg", "audio/opus"}

# base MIME type -> (file extension, MIME type sent with the upload)
UPLOAD_FORMATS = {
    "audio/ogg": ("oga", "audio/ogg"),
    "audio/opus": ("oga", "audio/ogg"),
    "audio/mp3": ("mp3", "audio/mp3"),
    "audio/mpeg": ("mp3", "audio/mpeg"),
    "audio/mp4": ("m4a", "audio/mp4"),
    "audio/x-m4a": ("m4a", "audio/x-m4a"),
    "audio/aac": ("aac", "audio/aac"),
    "audio/amr": ("amr", "audio/amr"),
    "audio/wav": ("wav", "audio/wav"),
    "audio/x-wav": ("wav", "audio/wav"),
    "audio/webm": ("webm", "audio/webm"),
}
FALLBACK_FORMAT = ("oga", "audio/ogg")


def base_mime_type(mime_type: str) -> str:
    """'audio/ogg; codecs=opus' -> 'audio/ogg'"""
    return (mime_type or "").split(";")[0].strip().lower()


def needs_conversion(mime_type: str) -> bool:
    return base_mime_type(mime_type) in CONVERTIBLE_TYPES


def resolve_upload_format(mime_type: str) -> tuple[str, str]:
    """Return (filename, upload MIME type) for the transcription request."""
    ext, upload_mime = UPLOAD_FORMATS.get(base_mime_type(mime_type), FALLBACK_FORMAT)
    return f"audio.{ext}", upload_mime


class AudioConverterClient:
    """Client for the stateless Ogg/Opus -> WAV conversion service."""

    def __init__(self, base_url: str, http: httpx.AsyncClient):
        self.base_url = base_url.rstrip("/")
        self._http = http

    async def convert(self, audio: bytes) -> bytes:
        url = f"{self.base_url}/convert"
        logger.info(f"[CONVERT] Sending {len(audio)} bytes to {url}")
        try:
            resp = await self._http.post(url, files={"audio": ("audio.ogg", audio, "audio/ogg")})
        except httpx.HTTPError as e:
            raise ConversionError(f"Converter unreachable: {e}")
        if resp.status_code >= 300:
            raise ConversionError(
                f"Converter service error ({resp.status_code}): {resp.text[:200]}",
                status_code=resp.status_code,
            )
        took = resp.headers.get("X-Conversion-Time-Ms", "?")
        logger.info(f"[CONVERT] Converted to {len(resp.content)} bytes of WAV (took {took}ms)")
        return resp.content


class TranscriptionEngine(Protocol):
    async def transcribe(self, audio: bytes, filename: str, mime_type: str) -> str: ...


class OpenAITranscriptionEngine:
    """Hosted Whisper via the OpenAI audio API."""

    def __init__(self, client: AsyncOpenAI, model: str = "whisper-1", language: Optional[str] = "en"):
        self._client = client
        self.model = model
        self.language = language or None

    async def transcribe(self, audio: bytes, filename: str, mime_type: str) -> str:
        kwargs = {}
        if self.language:
            kwargs["language"] = self.language
        try:
            result = await self._client.audio.transcriptions.create(
                file=(filename, audio, mime_type),
                model=self.model,
                response_format="text",
                temperature=0,
                **kwargs,
            )
        except OpenAIError as e:
            raise TranscriptionError(f"Transcription request failed: {e}")
        # response_format="text" yields a plain string
        return result if isinstance(result, str) else getattr(result, "text", "")


class TranscriptionBridge:
    def __init__(self, engine: TranscriptionEngine, converter: AudioConverterClient):
        self.engine = engine
        self.converter = converter

    async def transcribe(self, audio: bytes, mime_type: str) -> str:
        """Transcribe a voice buffer, converting Ogg/Opus first.

        Raises ConversionError or TranscriptionError; there is no fallback.
        """
        if not audio:
            raise TranscriptionError("Empty audio buffer")

        start = time.time()
        if needs_conversion(mime_type):
            audio = await self.converter.convert(audio)
            mime_type = "audio/wav"

        filename, upload_mime = resolve_upload_format(mime_type)
        logger.info(f"[TRANSCRIBE] {filename} ({upload_mime}, {len(audio)} bytes)")
        try:
            text = await self.engine.transcribe(audio, filename, upload_mime)
        except TranscriptionError:
            raise
        except Exception as e:
            raise TranscriptionError(f"Transcription engine failed: {e}")

        text = (text or "").strip()
        if not text:
            raise TranscriptionError("Transcription returned no text")
        logger.info(f"[TRANSCRIBE] {len(text)} chars in {time.time() - start:.1f}s")
        return text
