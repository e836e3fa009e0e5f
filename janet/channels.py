"""Outbound WhatsApp channels.

Each provider gets one channel that sends text replies and downloads the
media referenced by inbound voice notes.
"""

import logging
from typing import Optional, Protocol

import httpx

from janet.errors import ChannelError
from janet.models import Provider

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.facebook.com/v21.0"
TWILIO_API_URL = "https://api.twilio.com/2010-04-01"


class Channel(Protocol):
    provider: Provider

    async def send_text(self, to: str, body: str) -> None: ...

    async def download_media(self, source: str) -> bytes: ...


def _whatsapp_address(number: str) -> str:
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


class TwilioChannel:
    provider = Provider.TWILIO

    def __init__(self, account_sid: str, auth_token: str, from_number: str,
                 http: httpx.AsyncClient, api_url: str = TWILIO_API_URL):
        self.account_sid = account_sid
        self.from_number = from_number
        self._auth = (account_sid, auth_token)
        self._http = http
        self.api_url = api_url.rstrip("/")

    async def send_text(self, to: str, body: str) -> None:
        url = f"{self.api_url}/Accounts/{self.account_sid}/Messages.json"
        data = {
            "To": _whatsapp_address(to),
            "From": _whatsapp_address(self.from_number),
            "Body": body,
        }
        try:
            resp = await self._http.post(url, data=data, auth=self._auth)
        except httpx.HTTPError as e:
            raise ChannelError(f"Twilio unreachable: {e}")
        if resp.status_code >= 300:
            raise ChannelError(
                f"Twilio API error ({resp.status_code}): {resp.text[:200]}",
                status_code=resp.status_code,
            )
        sid = resp.json().get("sid", "?")
        logger.info(f"[SEND] Twilio message {sid} -> {to}")

    async def download_media(self, source: str) -> bytes:
        """``source`` is the MediaUrl0 Twilio delivered."""
        try:
            resp = await self._http.get(source, auth=self._auth, follow_redirects=True)
        except httpx.HTTPError as e:
            raise ChannelError(f"Media download failed: {e}")
        if resp.status_code >= 300:
            raise ChannelError(f"Media download failed ({resp.status_code})", status_code=resp.status_code)
        logger.info(f"[MEDIA] Downloaded {len(resp.content)} bytes from Twilio")
        return resp.content


class MetaChannel:
    provider = Provider.META

    def __init__(self, access_token: str, phone_number_id: str,
                 http: httpx.AsyncClient, api_url: str = GRAPH_API_URL):
        self.phone_number_id = phone_number_id
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._http = http
        self.api_url = api_url.rstrip("/")

    async def send_text(self, to: str, body: str) -> None:
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }
        url = f"{self.api_url}/{self.phone_number_id}/messages"
        try:
            resp = await self._http.post(url, json=payload, headers=self._headers)
        except httpx.HTTPError as e:
            raise ChannelError(f"Graph API unreachable: {e}")
        if resp.status_code >= 300:
            raise ChannelError(
                f"Graph API error ({resp.status_code}): {resp.text[:200]}",
                status_code=resp.status_code,
            )
        logger.info(f"[SEND] Meta message -> {to}")

    async def get_media_url(self, media_id: str) -> str:
        try:
            resp = await self._http.get(f"{self.api_url}/{media_id}", headers=self._headers)
        except httpx.HTTPError as e:
            raise ChannelError(f"Media lookup failed: {e}")
        if resp.status_code >= 300:
            raise ChannelError(f"Media lookup failed ({resp.status_code})", status_code=resp.status_code)
        url = resp.json().get("url")
        if not url:
            raise ChannelError(f"No URL for media {media_id}")
        return url

    async def download_media(self, source: str) -> bytes:
        """``source`` is a Graph API media id."""
        url = await self.get_media_url(source)
        try:
            resp = await self._http.get(url, headers=self._headers)
        except httpx.HTTPError as e:
            raise ChannelError(f"Media download failed: {e}")
        if resp.status_code >= 300:
            raise ChannelError(f"Media download failed ({resp.status_code})", status_code=resp.status_code)
        logger.info(f"[MEDIA] Downloaded {len(resp.content)} bytes for media {source}")
        return resp.content


class ChannelRouter:
    """Picks the channel a reply goes out on."""

    def __init__(self, channels: dict[Provider, Channel], default: Provider):
        self.channels = channels
        self.default = default

    def for_provider(self, provider: Optional[Provider]) -> Channel:
        channel = self.channels.get(provider) if provider else None
        if channel is None:
            channel = self.channels.get(self.default)
        if channel is None:
            raise ChannelError(f"No outbound channel configured for {provider or self.default}")
        return channel
