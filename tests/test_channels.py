"""Tests for outbound channels."""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from conftest import recording_transport
from janet.channels import ChannelRouter, MetaChannel, TwilioChannel
from janet.errors import ChannelError
from janet.models import Provider


class TestTwilioChannel:
    @pytest.mark.asyncio
    async def test_send_text(self):
        calls = []
        transport = recording_transport(
            {("POST", "/2010-04-01/Accounts/AC1/Messages.json"): (201, {"sid": "SM1"})}, calls,
        )
        async with httpx.AsyncClient(transport=transport) as http:
            channel = TwilioChannel("AC1", "secret", "+14155238886", http)
            await channel.send_text("+15551234567", "Task added")
        form = parse_qs(calls[0].content.decode())
        assert form["To"] == ["whatsapp:+15551234567"]
        assert form["From"] == ["whatsapp:+14155238886"]
        assert form["Body"] == ["Task added"]
        assert calls[0].headers["authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_send_failure(self):
        transport = recording_transport({}, [])
        async with httpx.AsyncClient(transport=transport) as http:
            with pytest.raises(ChannelError):
                await TwilioChannel("AC1", "secret", "+1", http).send_text("+2", "hi")

    @pytest.mark.asyncio
    async def test_download_media(self):
        calls = []
        transport = recording_transport({("GET", "/media/ME1"): (200, b"OggS...")}, calls)
        async with httpx.AsyncClient(transport=transport) as http:
            audio = await TwilioChannel("AC1", "secret", "+1", http).download_media(
                "https://api.twilio.com/media/ME1"
            )
        assert audio == b"OggS..."


class TestMetaChannel:
    @pytest.mark.asyncio
    async def test_send_text(self):
        calls = []
        transport = recording_transport({("POST", "/v21.0/123456/messages"): (200, {"messages": []})}, calls)
        async with httpx.AsyncClient(transport=transport) as http:
            await MetaChannel("tok", "123456", http).send_text("15551234567", "Hi Ada")
        body = json.loads(calls[0].content)
        assert body == {
            "messaging_product": "whatsapp",
            "to": "15551234567",
            "type": "text",
            "text": {"body": "Hi Ada"},
        }
        assert calls[0].headers["authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_download_media_resolves_url_first(self):
        calls = []
        transport = recording_transport({
            ("GET", "/v21.0/MEDIA1"): (200, {"url": "https://lookaside.example/file/MEDIA1"}),
            ("GET", "/file/MEDIA1"): (200, b"voice-bytes"),
        }, calls)
        async with httpx.AsyncClient(transport=transport) as http:
            audio = await MetaChannel("tok", "123456", http).download_media("MEDIA1")
        assert audio == b"voice-bytes"
        assert [c.url.path for c in calls] == ["/v21.0/MEDIA1", "/file/MEDIA1"]

    @pytest.mark.asyncio
    async def test_media_without_url(self):
        transport = recording_transport({("GET", "/v21.0/MEDIA1"): (200, {"id": "MEDIA1"})}, [])
        async with httpx.AsyncClient(transport=transport) as http:
            with pytest.raises(ChannelError):
                await MetaChannel("tok", "123456", http).get_media_url("MEDIA1")


class TestChannelRouter:
    def test_routes_by_provider_with_default(self):
        meta, twilio = object(), object()
        router = ChannelRouter({Provider.META: meta, Provider.TWILIO: twilio}, default=Provider.TWILIO)
        assert router.for_provider(Provider.META) is meta
        assert router.for_provider(None) is twilio

    def test_falls_back_to_default(self):
        twilio = object()
        router = ChannelRouter({Provider.TWILIO: twilio}, default=Provider.TWILIO)
        assert router.for_provider(Provider.META) is twilio

    def test_no_channel(self):
        with pytest.raises(ChannelError):
            ChannelRouter({}, default=Provider.META).for_provider(Provider.META)
