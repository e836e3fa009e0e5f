"""Provider detection and payload normalization.

Two providers deliver WhatsApp messages with incompatible wire formats:

    Meta (native Cloud API)   JSON body, signed with X-Hub-Signature-256,
                              batches of entry -> changes -> value.messages
    Twilio (bridge)           form-encoded body, one message per request

Both are folded into ``NormalizedMessage``.
"""

import json
import logging
from typing import Optional
from urllib.parse import parse_qs

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from janet.errors import PayloadError
from janet.models import InboundEnvelope, NormalizedMessage, Provider, VoiceReference

logger = logging.getLogger(__name__)

META_OBJECT = "whatsapp_business_account"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def detect_provider(content_type: Optional[str]) -> Provider:
    """Form-encoded bodies come from Twilio; everything else is Meta."""
    if content_type and FORM_CONTENT_TYPE in content_type.lower():
        return Provider.TWILIO
    return Provider.META


# ── Meta payload models ────────────────────────────────────────────────


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class MetaText(_Lenient):
    body: str


class MetaAudio(_Lenient):
    id: str
    mime_type: str = "audio/ogg"
    voice: bool = False


class MetaMessage(_Lenient):
    id: str
    from_: str = Field(alias="from")
    timestamp: Optional[str] = None
    type: str
    text: Optional[MetaText] = None
    audio: Optional[MetaAudio] = None


class MetaProfile(_Lenient):
    name: str = ""


class MetaContact(_Lenient):
    profile: MetaProfile = Field(default_factory=MetaProfile)
    wa_id: str = ""


class MetaValue(_Lenient):
    messaging_product: str = "whatsapp"
    contacts: list[MetaContact] = Field(default_factory=list)
    messages: list[dict] = Field(default_factory=list)


class MetaChange(_Lenient):
    value: MetaValue = Field(default_factory=MetaValue)
    field: str = ""


class MetaEntry(_Lenient):
    id: str = ""
    changes: list[MetaChange] = Field(default_factory=list)


class MetaWebhookPayload(_Lenient):
    object: str
    entry: list[MetaEntry] = Field(default_factory=list)


def parse_meta_payload(body: bytes) -> MetaWebhookPayload:
    """Parse a Meta webhook body. Raises PayloadError for anything off-schema."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise PayloadError(f"Body is not JSON: {e}")
    if not isinstance(data, dict):
        raise PayloadError("Body is not a JSON object")
    try:
        payload = MetaWebhookPayload.model_validate(data)
    except ValidationError as e:
        raise PayloadError(f"Unexpected payload shape: {e.error_count()} errors")
    if payload.object != META_OBJECT:
        raise PayloadError(f"Unexpected object tag: {payload.object!r}")
    return payload


def normalize_meta_message(raw: dict, value: MetaValue) -> Optional[NormalizedMessage]:
    """Build a NormalizedMessage from one entry of ``value.messages``.

    Returns None for message kinds the assistant does not handle
    (images, stickers, reactions, ...).
    """
    try:
        message = MetaMessage.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"[NORMALIZE] Skipping malformed Meta message: {e.error_count()} errors")
        return None

    display_name = "User"
    if value.contacts and value.contacts[0].profile.name:
        display_name = value.contacts[0].profile.name

    if message.type == "text" and message.text is not None:
        return NormalizedMessage(
            provider=Provider.META,
            sender_id=message.from_,
            display_name=display_name,
            message_id=message.id,
            text=message.text.body,
        )
    if message.type == "audio" and message.audio is not None:
        return NormalizedMessage(
            provider=Provider.META,
            sender_id=message.from_,
            display_name=display_name,
            message_id=message.id,
            voice=VoiceReference(source=message.audio.id, mime_type=message.audio.mime_type),
        )

    logger.info(f"[NORMALIZE] Unsupported Meta message type: {message.type}")
    return None


def iter_meta_messages(payload: MetaWebhookPayload):
    """Yield (InboundEnvelope, NormalizedMessage | None) for every delivered message."""
    for entry in payload.entry:
        for change in entry.changes:
            for raw in change.value.messages:
                envelope = InboundEnvelope(
                    provider=Provider.META,
                    sender_id=str(raw.get("from", "")),
                    message_id=str(raw.get("id", "")),
                    payload=raw,
                )
                yield envelope, normalize_meta_message(raw, change.value)


# ── Twilio form payload ────────────────────────────────────────────────


def parse_twilio_form(body: bytes) -> dict[str, str]:
    """Decode a form-encoded body into single-valued fields."""
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise PayloadError(f"Form body is not UTF-8: {e}")
    return {k: v[0] for k, v in parse_qs(text, keep_blank_values=True).items()}


def _strip_whatsapp_prefix(address: str) -> str:
    return address[len("whatsapp:"):] if address.startswith("whatsapp:") else address


def normalize_twilio_form(fields: dict[str, str]) -> Optional[NormalizedMessage]:
    """Build a NormalizedMessage from Twilio's webhook fields.

    Audio media wins over the text body; a request with neither usable text
    nor audio returns None.
    """
    body = fields.get("Body") or ""
    media_url = fields.get("MediaUrl0") or ""
    media_type = fields.get("MediaContentType0") or "audio/ogg"
    sender = _strip_whatsapp_prefix(fields.get("From") or "") or "unknown"
    message_id = fields.get("MessageSid") or "unknown"
    display_name = fields.get("ProfileName") or sender

    if media_url and media_type.lower().startswith("audio/"):
        return NormalizedMessage(
            provider=Provider.TWILIO,
            sender_id=sender,
            display_name=display_name,
            message_id=message_id,
            voice=VoiceReference(source=media_url, mime_type=media_type),
        )
    if body.strip():
        return NormalizedMessage(
            provider=Provider.TWILIO,
            sender_id=sender,
            display_name=display_name,
            message_id=message_id,
            text=body,
        )
    if media_url:
        logger.info(f"[NORMALIZE] Unsupported Twilio media type: {media_type}")
    return None
