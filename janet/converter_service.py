"""Audio converter service: Ogg/Opus in, 16 kHz mono PCM WAV out.

Stateless. Run with ``janet converter`` (default port 3001).
"""

import asyncio
import logging
import shutil
import time
from typing import Optional

from fastapi import FastAPI, File, UploadFile
from fastapi.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 16 * 1024 * 1024  # WhatsApp media limit
FFMPEG_TIMEOUT = 60  # seconds

FFMPEG_ARGS = [
    "-hide_banner", "-loglevel", "error",
    "-f", "ogg", "-i", "pipe:0",
    "-acodec", "pcm_s16le", "-ac", "1", "-ar", "16000",
    "-f", "wav", "pipe:1",
]


def _get_binary_path(name: str) -> Optional[str]:
    path = shutil.which(name)
    if not path:
        logger.warning(f"Binary '{name}' not found in PATH")
    return path


class FFmpegError(Exception):
    pass


async def convert_ogg_to_wav(audio: bytes, ffmpeg_path: str) -> bytes:
    proc = await asyncio.create_subprocess_exec(
        ffmpeg_path, *FFMPEG_ARGS,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(audio), timeout=FFMPEG_TIMEOUT)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise FFmpegError(f"ffmpeg timed out after {FFMPEG_TIMEOUT}s")
    if proc.returncode != 0:
        raise FFmpegError(stderr.decode(errors="replace").strip()[:500] or f"exit code {proc.returncode}")
    if not stdout:
        raise FFmpegError("ffmpeg produced no output")
    return stdout


def create_converter_app() -> FastAPI:
    app = FastAPI(title="Janet Audio Converter")

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "audio-converter", "ffmpeg": bool(shutil.which("ffmpeg"))}

    @app.post("/convert")
    async def convert(audio: Optional[UploadFile] = File(None)):
        start = time.time()
        if audio is None:
            return JSONResponse({"error": "No audio file provided"}, status_code=400)

        data = await audio.read(MAX_UPLOAD_BYTES + 1)
        if len(data) > MAX_UPLOAD_BYTES:
            return JSONResponse(
                {"error": "File too large", "message": "Audio file must be less than 16MB"},
                status_code=413,
            )
        if not data:
            return JSONResponse({"error": "Empty audio file"}, status_code=400)

        logger.info(f"[CONVERT] {len(data)} bytes ({audio.content_type})")
        ffmpeg_path = _get_binary_path("ffmpeg")
        if not ffmpeg_path:
            return JSONResponse({"error": "ffmpeg is not installed"}, status_code=503)

        try:
            wav = await convert_ogg_to_wav(data, ffmpeg_path)
        except FFmpegError as e:
            logger.error(f"[CONVERT] ffmpeg failed: {e}")
            return JSONResponse({"error": "Audio conversion failed", "message": str(e)}, status_code=500)

        took_ms = int((time.time() - start) * 1000)
        logger.info(f"[CONVERT] Done: {len(wav)} bytes in {took_ms}ms")
        return Response(
            content=wav,
            media_type="audio/wav",
            headers={"X-Conversion-Time-Ms": str(took_ms)},
        )

    return app
