"""
One processing turn per normalized message.

    resolve content (transcribe voice)
    -> tool scope: session from cache, prompt with history, run session
    -> reply on the sender's channel
    -> record the exchange in memory (fire-and-forget)

A user's turns are serialized by a per-user lock so history appends keep
receipt order; different users run concurrently.
"""

import asyncio
import logging
import time

from janet.channels import ChannelRouter
from janet.conversation import ConversationHistory, format_prompt
from janet.memory import MemoryClient
from janet.models import MessageKind, NormalizedMessage
from janet.session_cache import SessionCache, UserLocks
from janet.tool_connections import ToolConnectionManager
from janet.transcription import TranscriptionBridge

logger = logging.getLogger(__name__)

APOLOGY = "I'm sorry, I encountered an error processing your message. Please try again."
EMPTY_REPLY = "Done."


class MessagePipeline:
    def __init__(
        self,
        sessions: SessionCache,
        history: ConversationHistory,
        tools: ToolConnectionManager,
        transcriber: TranscriptionBridge,
        channels: ChannelRouter,
        memory: MemoryClient,
    ):
        self.sessions = sessions
        self.history = history
        self.tools = tools
        self.transcriber = transcriber
        self.channels = channels
        self.memory = memory
        self._user_locks = UserLocks()
        self._background: set[asyncio.Task] = set()
        self.processed = 0
        self.failed = 0

    async def resolve_content(self, message: NormalizedMessage) -> str:
        """Text as-is; voice notes downloaded through their channel and transcribed."""
        if message.kind == MessageKind.TEXT:
            return message.text
        channel = self.channels.for_provider(message.provider)
        audio = await channel.download_media(message.voice.source)
        logger.info(f"[PIPELINE] Voice note from {message.display_name}: {len(audio)} bytes "
                    f"({message.voice.mime_type})")
        return await self.transcriber.transcribe(audio, message.voice.mime_type)

    async def respond(self, user_id: str, content: str) -> str:
        """Run the reasoning session for one turn and update history."""
        async with self.tools.turn():
            session = await self.sessions.get_session(user_id)
            history = self.history.get(user_id)
            self.history.append(user_id, "user", content)
            logger.info(f"[PIPELINE] Processing for {user_id} (history: {len(history)} turns)")
            result = await session.generate(format_prompt(history, content))

        reply = result.text or EMPTY_REPLY
        self.history.append(user_id, "assistant", reply)
        return reply

    def _record_in_background(self, user_id: str, content: str, reply: str) -> None:
        task = asyncio.create_task(self.memory.record_conversation(user_id, content, reply))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def handle(self, message: NormalizedMessage) -> None:
        """Process one message end to end. Never raises."""
        user_id = message.sender_id
        start = time.time()
        try:
            async with self._user_locks.hold(user_id):
                try:
                    content = await self.resolve_content(message)
                    reply = await self.respond(user_id, content)
                except Exception as e:
                    logger.error(f"[PIPELINE] Turn failed for {user_id}: {type(e).__name__}: {e}")
                    self.failed += 1
                    await self._send_apology(message)
                    return

                channel = self.channels.for_provider(message.provider)
                await channel.send_text(user_id, reply)
                self.processed += 1
                logger.info(f"[PIPELINE] Replied to {user_id} in {time.time() - start:.1f}s")
                self._record_in_background(user_id, content, reply)
        except Exception as e:
            logger.error(f"[PIPELINE] Failed to deliver reply to {user_id}: {e}")
            self.failed += 1
            await self._send_apology(message)

    async def _send_apology(self, message: NormalizedMessage) -> None:
        try:
            channel = self.channels.for_provider(message.provider)
            await channel.send_text(message.sender_id, APOLOGY)
        except Exception as e:
            logger.error(f"[PIPELINE] Could not send apology to {message.sender_id}: {e}")

    async def drain(self) -> None:
        """Wait for pending memory writes."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def stats(self) -> dict:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "active_conversations": self.history.active_users,
            "sessions": self.sessions.stats(),
        }
