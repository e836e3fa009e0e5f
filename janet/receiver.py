"""FastAPI webhook receiver for WhatsApp (Meta Cloud API and Twilio)."""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from janet.config import Config, load_config
from janet.errors import AuthenticationError, PayloadError
from janet.models import Provider
from janet.normalizer import (
    detect_provider,
    iter_meta_messages,
    normalize_twilio_form,
    parse_meta_payload,
    parse_twilio_form,
)
from janet.pipeline import MessagePipeline
from janet.verify import SIGNATURE_HEADER, require_signature, verify_webhook_token

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/webhooks/whatsapp"
TWIML_EMPTY = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def _first_param(request: Request, *names: str) -> Optional[str]:
    for name in names:
        value = request.query_params.get(name)
        if value is not None:
            return value
    return None


def create_app(config: Config, pipeline: MessagePipeline, lifespan=None) -> FastAPI:
    app = FastAPI(title="Janet WhatsApp Receiver", lifespan=lifespan)
    started_at = time.time()

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "service": "janet",
            "provider": config.whatsapp_provider,
            "uptime": round(time.time() - started_at, 1),
            "pipeline": pipeline.stats(),
        }

    @app.get(WEBHOOK_PATH)
    async def verify_webhook(request: Request):
        """Subscription handshake from Meta."""
        mode = _first_param(request, "hub.mode", "mode")
        token = _first_param(request, "hub.verify_token", "verify_token")
        challenge = _first_param(request, "hub.challenge", "challenge")

        if mode is None or token is None or challenge is None:
            return JSONResponse({"error": "Missing parameters"}, status_code=400)

        result = verify_webhook_token(mode, token, challenge, config.whatsapp_verify_token)
        if result is None:
            logger.warning("[WEBHOOK] Verification failed")
            return JSONResponse({"error": "Verification failed"}, status_code=403)
        logger.info("[WEBHOOK] Verified")
        return PlainTextResponse(result)

    async def _handle_meta(request: Request, body: bytes):
        try:
            require_signature(body, request.headers.get(SIGNATURE_HEADER), config.whatsapp_app_secret)
        except AuthenticationError as e:
            logger.warning(f"[WEBHOOK] Rejected: {e}")
            return JSONResponse({"error": "Invalid signature"}, status_code=403)

        try:
            payload = parse_meta_payload(body)
        except PayloadError as e:
            logger.info(f"[WEBHOOK] Ignored Meta payload: {e}")
            return {"status": "ignored"}

        for envelope, message in iter_meta_messages(payload):
            if message is None:
                continue
            try:
                await pipeline.handle(message)
            except Exception as e:
                logger.error(f"[WEBHOOK] Message {envelope.message_id} failed: {e}", exc_info=True)
        return {"status": "ok"}

    async def _handle_twilio(body: bytes):
        try:
            message = normalize_twilio_form(parse_twilio_form(body))
        except PayloadError as e:
            logger.info(f"[WEBHOOK] Ignored Twilio payload: {e}")
            return {"status": "ignored"}
        if message is None:
            return {"status": "ignored"}
        logger.info(f"[WEBHOOK] Twilio {message.kind.value} message from {message.display_name}")
        await pipeline.handle(message)
        return Response(content=TWIML_EMPTY, media_type="text/xml")

    @app.post(WEBHOOK_PATH)
    async def receive_message(request: Request):
        body = await request.body()
        provider = detect_provider(request.headers.get("content-type"))
        try:
            if provider == Provider.TWILIO:
                return await _handle_twilio(body)
            return await _handle_meta(request, body)
        except Exception as e:
            # acknowledge anyway so the provider does not redeliver
            logger.error(f"[WEBHOOK] Unhandled error ({provider.value}): {e}", exc_info=True)
            if provider == Provider.TWILIO:
                return Response(content=TWIML_EMPTY, media_type="text/xml")
            return {"status": "error"}

    return app


def app_factory() -> FastAPI:
    """uvicorn factory: ``uvicorn janet.receiver:app_factory --factory``."""
    from janet.services import build_services

    config = load_config()
    services = build_services(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await services.aclose()

    return create_app(config, services.pipeline, lifespan=lifespan)
