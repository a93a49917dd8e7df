# poller.py
"""
Live chat poll loop.

One ChatPoller per BotSession, and at most one running per live chat.
While enabled it repeats:
    fetch new messages -> dispatch each -> send replies -> wait POLL_INTERVAL

run_once() is a single cycle and is what tests drive. start()/stop() wrap it
in an asyncio task with a stop event as the cancellation handle.
"""

# =====================================================================
# IMPORTS
# =====================================================================
import asyncio
import logging
import os
from collections import deque
from typing import Callable

import commands
import youtube
from sessions import BotSession
from youtube import ChatMessage

log = logging.getLogger("ytchatbot.poller")

# =====================================================================
# CONFIG / CONSTANTS
# =====================================================================
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL_SECONDS", "2.5"))
REPLY_TO_PLAIN_CHAT = os.getenv("REPLY_TO_PLAIN_CHAT", "0") == "1"
SENT_IDS_KEPT = 500

FetchFn = Callable[[BotSession], list[ChatMessage]]
SendFn = Callable[[BotSession, str], "str | None"]

# live chat id -> the poller answering it; one loop per chat across all sessions
RUNNING: dict[str, "ChatPoller"] = {}

# =====================================================================
# POLLER
# =====================================================================

class ChatPoller:
    def __init__(
        self,
        session: BotSession,
        fetch: FetchFn | None = None,
        send: SendFn | None = None,
        interval: float = POLL_INTERVAL,
        reply_to_plain_chat: bool = REPLY_TO_PLAIN_CHAT,
    ):
        self.session = session
        self.interval = interval
        self.reply_to_plain_chat = reply_to_plain_chat
        self._fetch = fetch or youtube.fetch_new_messages
        self._send = send or youtube.send_chat_message
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._chat_id: str | None = None
        # ids of the last SENT_IDS_KEPT messages this poller posted, so it never answers itself
        self._sent_order: deque[str] = deque()
        self._sent_ids: set[str] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _remember_sent(self, message_id: str) -> None:
        self._sent_order.append(message_id)
        self._sent_ids.add(message_id)
        while len(self._sent_order) > SENT_IDS_KEPT:
            self._sent_ids.discard(self._sent_order.popleft())

    def should_answer(self, msg: ChatMessage) -> bool:
        if msg.message_id and msg.message_id in self._sent_ids:
            return False
        return self.reply_to_plain_chat or commands.is_addressed(msg.text)

    async def run_once(self) -> int:
        """
        One fetch/dispatch/send cycle.

        Any error is logged and swallowed; whatever is left of the batch is
        dropped and the next cycle starts fresh.

        Returns:
            number of replies sent
        """
        sent = 0
        try:
            messages = await asyncio.to_thread(self._fetch, self.session)
            ctx = self.session.command_context()

            for msg in messages:
                if not self.should_answer(msg):
                    continue
                log.info("[CHAT] %s: %s", msg.author_name, msg.text)

                reply = commands.dispatch(msg.author_name, msg.text, ctx)
                if reply is None:
                    continue

                message_id = await asyncio.to_thread(self._send, self.session, reply)
                if message_id:
                    self._remember_sent(message_id)
                sent += 1
        except Exception as e:
            log.error("Chat poll cycle failed: %s", e)
        return sent

    def start(self) -> bool:
        """
        Start the loop as a task on the running event loop.

        Returns:
            False when this poller, or another one on the same live chat, is
            already running (nothing new is started)
        """
        chat_id = self.session.live_chat_id
        owner = RUNNING.get(chat_id)
        if self.running or (owner is not None and owner is not self and owner.running):
            log.info("Chat bot already running for %s", chat_id)
            return False

        self._stop.clear()
        self._chat_id = chat_id
        RUNNING[chat_id] = self
        self._task = asyncio.create_task(self._run())
        return True

    async def stop(self) -> bool:
        """Clear the enabled flag and wait for the current cycle to finish."""
        if not self.running:
            return False

        self._stop.set()
        await self._task
        return True

    async def _run(self) -> None:
        try:
            await self._loop()
        finally:
            if RUNNING.get(self._chat_id) is self:
                del RUNNING[self._chat_id]
            log.info("Chat bot stopped for %s", self._chat_id)

    async def _loop(self) -> None:
        log.info("Chat bot started for %s (every %.1fs)", self.session.live_chat_id, self.interval)
        while not self._stop.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
