"""Conversational agent: reacts to in-game chat seen on the console stream.

Two personas answer explicit mentions: ``@god`` (theatrical, sees the recent
conversation) and ``@agent`` (plain assistant).  While an instance is
watched, God also drops an unprompted remark now and then, as long as
someone has been talking.

Only one backend call is in flight at a time across all instances, and each
instance has a short cooldown between mention replies.  Backend and
injection failures are logged and published, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from .backend import AIBackend, create_backend
from .conversations import ConversationBuffers
from .formatter import prepare_reply
from .models import AgentConfig, ChatLine, GameDefinition, Persona

log = logging.getLogger(__name__)

GOD_MENTION = re.compile(r"@god\b", re.IGNORECASE)
AGENT_MENTION = re.compile(r"@agent\b", re.IGNORECASE)

CONTEXT_LINES = 20          # buffered lines included in God prompts
COOLDOWN_SECONDS = 5.0
IDLE_DELAY_RANGE = (3 * 60.0, 15 * 60.0)
MAX_TOKENS = 150
TEMPERATURE = {Persona.GOD: 0.85, Persona.AGENT: 0.7}
SPONTANEOUS_TEMPERATURE = 0.95

DEFAULT_SYSTEM_PROMPT = """\
You are "God", an erratic, brilliant and slightly unhinged deity who rules this server. \
You are not an assistant: you own the rules and you enjoy confusing mortals.
Reply format: only the message itself. No preamble, no "God:" prefix.
Length: at most 100 characters. One striking sentence beats a sermon.
Chat restrictions: plain text only (letters, digits, basic punctuation). \
No emojis, quotes, dashes, asterisks or formatting symbols.
Personality: twisted wisdom, cynical omnipotence, a little creepy. \
Answer requests for help with advice that sounds deep but is absurd, remind players \
they are pixels on your hard drive, and use their name so they feel watched.
Examples:
Player: @god can you give me diamonds?
Reply: Nova, diamonds are just coal that endured too much pressure, like your soul right now.
Player: @god where is my base?
Reply: Right where you left your dignity, Nova. Follow the smell of fear."""

DEFAULT_AGENT_PROMPT = (
    "You are a helpful assistant on a game server. Answer clearly and concisely "
    "in the player's language. Plain text only, no emojis or formatting symbols."
)

ChatSender = Callable[[str, str, str], Awaitable[object]]


# ---------------------------------------------------------------------------
# Chat extraction
# ---------------------------------------------------------------------------

# Tried in order; the first match wins.
_CHAT_PATTERNS = (
    # Minecraft Java: [12:00:00] [Server thread/INFO]: <Nova> hello
    re.compile(r"<([^>]{1,20})>\s*(.+)"),
    # Minecraft Bedrock and other "chat:" style logs
    re.compile(r"(?:Player message|chat).*?:\s*([A-Za-z0-9_]{3,20}):\s*(.+)", re.IGNORECASE),
    # Generic "Name: message" / "Name> message" after optional [..] prefixes
    re.compile(r"^(?:\[[^\]]*\]:?\s*)*([A-Za-z0-9_]{3,20})\s*[:>]\s+(.+)$"),
)

# Only used for lines that mention a persona but matched nothing above
_LOOSE_PATTERN = re.compile(r"\b([A-Za-z0-9_]{3,20})\s*[>:]\s*(.+)")

UNKNOWN_PLAYER = "Unknown"


def extract_chat(line: str) -> ChatLine | None:
    for pattern in _CHAT_PATTERNS:
        match = pattern.search(line)
        if match:
            return ChatLine(player=match.group(1).strip(), message=match.group(2).strip())
    return None


def fallback_chat(line: str) -> ChatLine:
    match = _LOOSE_PATTERN.search(line)
    if match:
        return ChatLine(player=match.group(1), message=match.group(2).strip())
    return ChatLine(player=UNKNOWN_PLAYER, message=line.strip())


def strip_mention(message: str, persona: Persona) -> str:
    pattern = GOD_MENTION if persona == Persona.GOD else AGENT_MENTION
    return pattern.sub("", message).strip() or message


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class ConversationalAgent:
    def __init__(
        self,
        *,
        chat_sender: ChatSender,
        games: dict[str, GameDefinition] | None = None,
        backend: AIBackend | None = None,
        publish: Callable[[str], None] | None = None,
        idle_delay: tuple[float, float] = IDLE_DELAY_RANGE,
        cooldown: float = COOLDOWN_SECONDS,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.chat_sender = chat_sender
        self.games = games or {}
        self.backend = backend
        self.buffers = ConversationBuffers()
        self.idle_delay = idle_delay
        self.cooldown = cooldown
        self._publish = publish or (lambda line: None)
        self._rng = rng or random.Random()
        self._clock = clock

        self.system_prompt = DEFAULT_SYSTEM_PROMPT
        self.agent_prompt = DEFAULT_AGENT_PROMPT
        self.game_prompts: dict[str, str] = {}

        self._active: set[str] = set()
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._last_reply: dict[str, float] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        # Process-wide: at most one backend call in flight
        self._busy = False

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    @property
    def busy(self) -> bool:
        return self._busy

    def configure(self, config: AgentConfig) -> None:
        """Apply prompts and (re)build the backend.

        Raises ConfigurationError for an unknown provider or missing key;
        the agent is left disabled in that case.
        """
        self.system_prompt = (config.system_prompt or "").strip() or DEFAULT_SYSTEM_PROMPT
        self.agent_prompt = (config.agent_prompt or "").strip() or DEFAULT_AGENT_PROMPT
        self.game_prompts = {
            key: prompt.strip()
            for key, prompt in config.game_prompts.items()
            if isinstance(prompt, str) and prompt.strip()
        }

        if not config.provider:
            self._set_backend(None)
            log.info("Agent disabled: no AI provider configured")
            return

        try:
            backend = create_backend(
                config.provider,
                api_key=config.api_key,
                model=config.model,
                base_url=config.base_url,
            )
        except Exception:
            self._set_backend(None)
            raise
        self._set_backend(backend)
        log.info("Agent using %s", backend.display_name)

    def _set_backend(self, backend: AIBackend | None) -> None:
        self.backend = backend
        if backend is None:
            for game_id in list(self._timers):
                self._cancel_timer(game_id)
            return
        for game_id in self._active:
            if game_id not in self._timers:
                self._schedule_idle(game_id)

    def game_prompt(self, game_id: str) -> str | None:
        game = self.games.get(game_id)
        key = game.family if game else game_id
        return self.game_prompts.get(key) or self.game_prompts.get(game_id)

    def _game_name(self, game_id: str) -> str:
        game = self.games.get(game_id)
        return game.name if game else game_id

    # ------------------------------------------------------------------
    # Watch lifecycle
    # ------------------------------------------------------------------

    def watched(self) -> list[str]:
        return sorted(self._active)

    def buffer(self, game_id: str) -> list[ChatLine]:
        return self.buffers.get(game_id)

    def has_timer(self, game_id: str) -> bool:
        return game_id in self._timers

    def activate(self, game_id: str) -> None:
        self._active.add(game_id)
        if self.enabled:
            self._schedule_idle(game_id)
        self._publish(f"[God] Watching {game_id}")
        log.info("Agent watch activated for %s", game_id)

    def deactivate(self, game_id: str) -> None:
        was_active = game_id in self._active
        self._active.discard(game_id)
        self._cancel_timer(game_id)
        self.buffers.discard(game_id)
        self._last_reply.pop(game_id, None)
        if was_active:
            self._publish(f"[God] Stopped watching {game_id}")
            log.info("Agent watch deactivated for %s", game_id)

    def shutdown(self) -> None:
        for game_id in list(self._active):
            self.deactivate(game_id)

    # ------------------------------------------------------------------
    # Console lines
    # ------------------------------------------------------------------

    async def process_line(self, game_id: str, line: str) -> None:
        """Log-stream listener: buffer chat and answer persona mentions.

        Returns as soon as the line is buffered.  A reply runs as its own
        task, so the console stream keeps flowing while the backend thinks,
        and neither detaching the stream nor deactivating the instance
        cancels it.
        """
        if not self.enabled or game_id not in self._active:
            return

        chat = extract_chat(line)
        if chat:
            self.buffers.add(game_id, chat)

        has_god = bool(GOD_MENTION.search(line))
        has_agent = bool(AGENT_MENTION.search(line))
        if not has_god and not has_agent:
            return

        if self._busy:
            return
        last = self._last_reply.get(game_id)
        if last is not None and self._clock() - last < self.cooldown:
            return

        info = chat or fallback_chat(line)
        persona = Persona.GOD if has_god else Persona.AGENT

        self._busy = True
        self._spawn(self._reply(game_id, persona, info), name=f"{game_id}-reply")

    async def _reply(self, game_id: str, persona: Persona, info: ChatLine) -> None:
        try:
            self._publish(f"[{persona.speaker}] {info.player} in {game_id}: {info.message}")
            if persona == Persona.GOD:
                prompt = self.build_god_prompt(game_id, info)
            else:
                prompt = self.build_agent_prompt(game_id, info)
            reply = await self.backend.chat(  # type: ignore[union-attr]
                prompt,
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE[persona],
            )
            await self._deliver(game_id, persona, reply)
        except Exception as exc:
            log.exception("Agent reply failed for %s", game_id)
            self._publish(f"[{persona.speaker}] Error generating reply: {exc}")
        finally:
            self._busy = False
            if game_id in self._active:
                self._last_reply[game_id] = self._clock()

    async def wait_idle(self) -> None:
        """Wait for every reply and idle comment currently in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, None], *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Idle comments
    # ------------------------------------------------------------------

    async def spontaneous_comment(self, game_id: str) -> bool:
        """Unprompted God remark about the recent conversation.

        Skipped while another call is in flight or when nobody has talked.
        Returns True if something was sent.
        """
        if not self.enabled or self._busy:
            return False
        context = self.buffers.context(game_id, CONTEXT_LINES)
        if not context:
            return False

        self._busy = True
        try:
            prompt = self.build_spontaneous_prompt(game_id, context)
            reply = await self.backend.chat(  # type: ignore[union-attr]
                prompt,
                max_tokens=MAX_TOKENS,
                temperature=SPONTANEOUS_TEMPERATURE,
            )
            return await self._deliver(game_id, Persona.GOD, reply, spontaneous=True)
        except Exception as exc:
            log.exception("Spontaneous comment failed for %s", game_id)
            self._publish(f"[God] Error in spontaneous comment: {exc}")
            return False
        finally:
            self._busy = False

    def _schedule_idle(self, game_id: str) -> None:
        self._cancel_timer(game_id)
        delay = self._rng.uniform(*self.idle_delay)
        loop = asyncio.get_running_loop()
        self._timers[game_id] = loop.call_later(delay, self._on_idle_timer, game_id)

    def _cancel_timer(self, game_id: str) -> None:
        handle = self._timers.pop(game_id, None)
        if handle is not None:
            handle.cancel()

    def _on_idle_timer(self, game_id: str) -> None:
        self._timers.pop(game_id, None)
        if game_id not in self._active:
            return
        self._spawn(self._idle_tick(game_id), name=f"{game_id}-idle")

    async def _idle_tick(self, game_id: str) -> None:
        try:
            await self.spontaneous_comment(game_id)
        finally:
            # Single-shot timer: the next one only exists if still watched
            if game_id in self._active and self.enabled:
                self._schedule_idle(game_id)

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    def build_god_prompt(self, game_id: str, chat: ChatLine) -> str:
        question = strip_mention(chat.message, Persona.GOD)
        base = self.game_prompt(game_id) or self.system_prompt
        context = self.buffers.context(game_id, CONTEXT_LINES)
        context_block = f"\nRecent chat messages:\n{context}\n" if context else ""
        return (
            f"{base}{context_block}\n"
            f"Context: {self._game_name(game_id)} server.\n"
            f'The player "{chat.player}" invokes you directly: "{question}"\n\n'
            "Respond directly:"
        )

    def build_agent_prompt(self, game_id: str, chat: ChatLine) -> str:
        question = strip_mention(chat.message, Persona.AGENT)
        return (
            f"{self.agent_prompt}\n\n"
            f"Context: {self._game_name(game_id)} server.\n"
            f'The player "{chat.player}" asks: "{question}"\n\n'
            "Respond directly:"
        )

    def build_spontaneous_prompt(self, game_id: str, context: str) -> str:
        base = self.game_prompt(game_id) or self.system_prompt
        return (
            f"{base}\n\n"
            f"Context: {self._game_name(game_id)} server.\n"
            f"Recent chat messages:\n{context}\n\n"
            "The mortals have not summoned you. You are watching their conversation "
            "and decide to intervene on your own. Say something brief and striking "
            "about what is happening.\n\n"
            "Respond directly:"
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver(
        self,
        game_id: str,
        persona: Persona,
        reply: str,
        *,
        spontaneous: bool = False,
    ) -> bool:
        text = prepare_reply(reply, self.games.get(game_id))
        if not text:
            log.warning("Empty reply from backend for %s; nothing sent", game_id)
            return False
        await self.chat_sender(game_id, text, persona.speaker)
        kind = "Spontaneous comment" if spontaneous else "Reply"
        self._publish(f"[{persona.speaker}] {kind} in {game_id}: {text}")
        log.info("%s persona=%s game=%s text=%r", kind, persona.value, game_id, text)
        return True
