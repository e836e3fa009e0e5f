"""On-host transcription engine using faster-whisper.

Selected with TRANSCRIPTION_BACKEND=local. Receives the same (already
converted) buffers as the hosted engine and runs the model in a worker thread.
"""

import asyncio
import io
import logging

from faster_whisper import WhisperModel

logger = logging.getLogger(__name__)


class LocalWhisperEngine:
    def __init__(self, model_size: str = "base", language: str = "en",
                 device: str = "auto", compute_type: str = "int8", beam_size: int = 5):
        self.model = WhisperModel(model_size, device=device, compute_type=compute_type)
        self.language = language or None
        self.beam_size = beam_size
        logger.info(f"[TRANSCRIBE] Local whisper ready: model={model_size}, device={device}")

    def _transcribe_sync(self, audio: bytes) -> str:
        segments, info = self.model.transcribe(
            io.BytesIO(audio),
            language=self.language,
            beam_size=self.beam_size,
            temperature=0.0,
            vad_filter=True,
            vad_parameters=dict(min_silence_duration_ms=500),
        )
        text = " ".join(seg.text.strip() for seg in segments if seg.text.strip())
        logger.info(f"[TRANSCRIBE] Local whisper: {info.duration:.1f}s audio")
        return text

    async def transcribe(self, audio: bytes, filename: str, mime_type: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._transcribe_sync, audio)
