"""Builds the process-wide services once at startup."""

import logging
from dataclasses import dataclass

import httpx
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from janet.agent import SessionFactory
from janet.channels import ChannelRouter, MetaChannel, TwilioChannel
from janet.config import Config
from janet.conversation import ConversationHistory
from janet.memory import MemoryClient
from janet.models import Provider
from janet.pipeline import MessagePipeline
from janet.session_cache import SessionCache
from janet.task_tools import conflict_analysis_tool, memory_tools, task_details_tool
from janet.todoist import TodoistClient
from janet.tool_connections import ToolConnectionManager
from janet.transcription import AudioConverterClient, OpenAITranscriptionEngine, TranscriptionBridge

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: Config
    http: httpx.AsyncClient
    tools: ToolConnectionManager
    sessions: SessionCache
    pipeline: MessagePipeline

    async def aclose(self) -> None:
        await self.pipeline.drain()
        self.sessions.clear()
        await self.tools.close_all()
        await self.http.aclose()
        logger.info("[SERVICES] Closed")


def build_transcription_engine(config: Config):
    if config.transcription_backend == "local":
        # faster-whisper pulls in ctranslate2; only import it when selected
        from janet.local_whisper import LocalWhisperEngine
        return LocalWhisperEngine(model_size=config.local_whisper_model, language=config.whisper_language)
    return OpenAITranscriptionEngine(
        AsyncOpenAI(api_key=config.openai_api_key),
        model=config.whisper_model,
        language=config.whisper_language,
    )


def build_channels(config: Config, http: httpx.AsyncClient) -> ChannelRouter:
    channels = {}
    if config.twilio_enabled:
        channels[Provider.TWILIO] = TwilioChannel(
            config.twilio_account_sid, config.twilio_auth_token, config.twilio_whatsapp_number, http
        )
    if config.meta_enabled:
        channels[Provider.META] = MetaChannel(config.whatsapp_access_token, config.whatsapp_phone_number_id, http)
    return ChannelRouter(channels, default=Provider(config.whatsapp_provider))


def build_services(config: Config) -> Services:
    http = httpx.AsyncClient(timeout=config.http_timeout_seconds)

    memory = MemoryClient(config.mem0_api_key, http, base_url=config.mem0_base_url)
    todoist = TodoistClient(config.todoist_api_token, http, base_url=config.todoist_api_url)
    tools = ToolConnectionManager(config.tool_servers())

    factory = SessionFactory(
        client=AsyncAnthropic(api_key=config.anthropic_api_key, timeout=config.http_timeout_seconds * 4),
        model=config.claude_model,
        tools=tools,
        memory=memory,
        local_tools=[conflict_analysis_tool(todoist), task_details_tool(todoist)],
        user_tools=lambda user_id: memory_tools(memory, user_id),
        max_steps=config.max_agent_steps,
        thinking_budget=config.thinking_budget_tokens if config.extended_thinking_enabled else None,
    )
    sessions = SessionCache(factory, ttl=config.session_ttl_seconds)

    transcriber = TranscriptionBridge(
        build_transcription_engine(config),
        AudioConverterClient(config.audio_converter_url, http),
    )

    pipeline = MessagePipeline(
        sessions=sessions,
        history=ConversationHistory(limit=config.history_limit),
        tools=tools,
        transcriber=transcriber,
        channels=build_channels(config, http),
        memory=memory,
    )
    logger.info(f"[SERVICES] Ready (tool servers: {', '.join(config.tool_servers())})")
    return Services(config=config, http=http, tools=tools, sessions=sessions, pipeline=pipeline)
