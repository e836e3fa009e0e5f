"""Tests for the audio converter service (ffmpeg mocked)."""

from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from janet import converter_service
from janet.converter_service import FFMPEG_ARGS, MAX_UPLOAD_BYTES, create_converter_app

WAV = b"RIFF\x24\x00\x00\x00WAVEfmt "


def _process(returncode=0, stdout=WAV, stderr=b""):
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.wait = AsyncMock()
    return proc


def _upload(data=b"OggS\x00\x02voice", name="voice.ogg"):
    return {"audio": (name, data, "audio/ogg")}


class TestConvert:
    def setup_method(self):
        self.client = TestClient(create_converter_app())

    def test_health(self):
        resp = self.client.get("/health")
        assert resp.json()["service"] == "audio-converter"

    def test_converts(self):
        proc = _process()
        with patch.object(converter_service.shutil, "which", return_value="/usr/bin/ffmpeg"), \
             patch.object(converter_service.asyncio, "create_subprocess_exec",
                          AsyncMock(return_value=proc)) as exec_mock:
            resp = self.client.post("/convert", files=_upload())

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "audio/wav"
        assert "x-conversion-time-ms" in resp.headers
        assert resp.content == WAV
        args = exec_mock.await_args.args
        assert args[0] == "/usr/bin/ffmpeg"
        assert list(args[1:]) == FFMPEG_ARGS
        proc.communicate.assert_awaited_once_with(b"OggS\x00\x02voice")

    def test_missing_file(self):
        resp = self.client.post("/convert")
        assert resp.status_code == 400

    def test_empty_file(self):
        resp = self.client.post("/convert", files=_upload(b""))
        assert resp.status_code == 400

    def test_too_large(self):
        resp = self.client.post("/convert", files=_upload(b"\x00" * (MAX_UPLOAD_BYTES + 1)))
        assert resp.status_code == 413

    def test_ffmpeg_missing(self):
        with patch.object(converter_service.shutil, "which", return_value=None):
            resp = self.client.post("/convert", files=_upload())
        assert resp.status_code == 503

    def test_ffmpeg_failure(self):
        proc = _process(returncode=1, stdout=b"", stderr=b"Invalid data found when processing input")
        with patch.object(converter_service.shutil, "which", return_value="/usr/bin/ffmpeg"), \
             patch.object(converter_service.asyncio, "create_subprocess_exec", AsyncMock(return_value=proc)):
            resp = self.client.post("/convert", files=_upload())
        assert resp.status_code == 500
        assert "Invalid data" in resp.json()["message"]
