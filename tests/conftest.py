"""Shared pytest fixtures for Janet tests."""

import json
import os
import sys
from types import SimpleNamespace

import httpx
import pytest

# Ensure janet is importable without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from janet.config import Config
from janet.models import Task


@pytest.fixture
def config():
    """A complete Twilio-mode configuration."""
    return Config(
        whatsapp_app_secret="app-secret",
        whatsapp_verify_token="verify-me",
        whatsapp_access_token="meta-token",
        whatsapp_phone_number_id="123456",
        twilio_account_sid="AC123",
        twilio_auth_token="twilio-token",
        twilio_whatsapp_number="+14155238886",
        whatsapp_provider="twilio",
        openai_api_key="sk-test",
        anthropic_api_key="sk-ant-test",
        todoist_api_token="todo-token",
        mem0_api_key="m0-test",
    )


@pytest.fixture
def make_task():
    def _make(id="1", content="Task", due=None, project_id=None, is_completed=False):
        return Task(id=id, content=content, due=due, project_id=project_id, is_completed=is_completed)
    return _make


@pytest.fixture
def meta_text_payload():
    """Meta webhook body carrying one text message."""
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "WABA_ID",
            "changes": [{
                "field": "messages",
                "value": {
                    "messaging_product": "whatsapp",
                    "metadata": {"display_phone_number": "15550000000", "phone_number_id": "123456"},
                    "contacts": [{"profile": {"name": "Ada"}, "wa_id": "15551234567"}],
                    "messages": [{
                        "from": "15551234567",
                        "id": "wamid.ABC",
                        "timestamp": "1700000000",
                        "type": "text",
                        "text": {"body": "Add milk to my groceries"},
                    }],
                },
            }],
        }],
    }


def recording_transport(responses: dict, calls: list):
    """httpx.MockTransport answering by (method, path); every request is appended to ``calls``."""
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        key = (request.method, request.url.path)
        if key not in responses:
            return httpx.Response(404, json={"error": "not found"})
        status, body = responses[key]
        if isinstance(body, (bytes, str)):
            return httpx.Response(status, content=body)
        return httpx.Response(status, content=json.dumps(body).encode(),
                              headers={"content-type": "application/json"})
    return httpx.MockTransport(handler)


def text_block(text):
    return SimpleNamespace(type="text", text=text)


def tool_use_block(id, name, input):
    return SimpleNamespace(type="tool_use", id=id, name=name, input=input)


def model_response(*blocks, stop_reason="end_turn"):
    return SimpleNamespace(content=list(blocks), stop_reason=stop_reason)
