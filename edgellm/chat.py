"""Multi-turn chat on top of an :class:`~edgellm.inference.InferenceEngine`.

``ChatSession`` keeps the conversation and renders it into a plain
``System:/User:/Assistant:`` transcript for the engine. ``run_chat_repl``
drives a terminal conversation for the ``edgellm chat`` command.
"""

from __future__ import annotations

import asyncio
import enum
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional

import click

from .errors import EngineError
from .inference import InferenceEngine
from .models import GenerateParams


class MessageRole(str, enum.Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


_LABELS = {
    MessageRole.SYSTEM: "System",
    MessageRole.USER: "User",
    MessageRole.ASSISTANT: "Assistant",
}


@dataclass(frozen=True)
class ChatMessage:
    role: MessageRole
    content: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ChatSession:
    """Conversation history bound to one engine.

    A turn is committed to the history only when generation succeeds; a
    failed or abandoned turn leaves the history as it was.
    """

    def __init__(self, engine: InferenceEngine, system_prompt: Optional[str] = None) -> None:
        self.engine = engine
        if system_prompt is None:
            system_prompt = engine.descriptor.default_system_prompt
        self.system_prompt = system_prompt
        self._messages: list[ChatMessage] = []
        self._started = time.monotonic()

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def message_count(self) -> int:
        return len(self._messages)

    @property
    def last_message(self) -> Optional[ChatMessage]:
        return self._messages[-1] if self._messages else None

    def add_message(self, role: MessageRole, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        self._messages.append(message)
        return message

    def prepare_input(self, prompt: str) -> str:
        """Render the history plus ``prompt`` as the engine input."""
        lines: list[str] = []
        if self.system_prompt:
            lines.append(f"System: {self.system_prompt}\n")
        for message in self._messages:
            lines.append(f"{_LABELS[message.role]}: {message.content}\n")
        if prompt:
            lines.append(f"User: {prompt}\n")
        lines.append("Assistant: ")
        return "".join(lines)

    def _commit(self, prompt: str, response: str) -> None:
        self.add_message(MessageRole.USER, prompt)
        self.add_message(MessageRole.ASSISTANT, response)

    async def generate(self, prompt: str, params: Optional[GenerateParams] = None) -> str:
        response = await self.engine.generate(self.prepare_input(prompt), params)
        self._commit(prompt, response)
        return response

    async def stream(
        self, prompt: str, params: Optional[GenerateParams] = None
    ) -> AsyncIterator[str]:
        """Stream the reply; the turn is recorded once the stream completes."""
        parts: list[str] = []
        async with self.engine.stream(self.prepare_input(prompt), params) as fragments:
            async for fragment in fragments:
                parts.append(fragment)
                yield fragment
        self._commit(prompt, "".join(parts))

    def remove_last_message(self) -> Optional[ChatMessage]:
        return self._messages.pop() if self._messages else None

    def clear_history(self) -> None:
        self._messages.clear()

    def export_conversation(self) -> str:
        lines = []
        if self.system_prompt:
            lines.append(f"system: {self.system_prompt}")
        lines.extend(f"{m.role.value}: {m.content}" for m in self._messages)
        return "\n".join(lines)

    def stats(self) -> dict[str, Any]:
        by_role = {role.value: 0 for role in MessageRole}
        for message in self._messages:
            by_role[message.role.value] += 1
        return {
            "model_id": self.engine.descriptor.model_id,
            "message_count": len(self._messages),
            "messages_by_role": by_role,
            "total_characters": sum(len(m.content) for m in self._messages),
            "duration_s": round(time.monotonic() - self._started, 2),
        }


# ---------------------------------------------------------------------------
# Terminal REPL
# ---------------------------------------------------------------------------


def _read_input() -> Optional[str]:
    """Read a line of user input. Returns ``None`` on EOF/interrupt."""
    try:
        return input(">>> ")
    except (EOFError, KeyboardInterrupt):
        return None


async def run_chat_repl(
    session: ChatSession,
    params: Optional[GenerateParams] = None,
    *,
    _input_fn: Optional[Callable[[], Optional[str]]] = None,
) -> None:
    """Interactive loop: stream each reply, ``/clear`` resets, ``/exit`` quits."""
    read_input = _input_fn or _read_input
    mode = session.engine.runtime_mode
    click.echo(
        f"Chatting with {session.engine.descriptor.model_id}"
        f" ({mode.value if mode else 'unloaded'} mode)."
        " Type /exit to quit, /clear to reset.\n"
    )

    while True:
        user_input = await asyncio.to_thread(read_input)
        if user_input is None:
            break

        stripped = user_input.strip()
        if stripped == "/exit":
            break
        if stripped == "/clear":
            session.clear_history()
            click.echo("Conversation cleared.")
            continue
        if not stripped:
            continue

        start = time.perf_counter()
        fragment_count = 0
        try:
            async for fragment in session.stream(stripped, params):
                click.echo(fragment, nl=False)
                fragment_count += 1
        except EngineError as exc:
            click.secho(f"\nError: {exc}", fg="red", err=True)
            continue

        elapsed = time.perf_counter() - start
        click.echo()
        click.echo(
            click.style(
                f"  [{fragment_count} fragments, {elapsed:.1f}s]",
                dim=True,
            )
        )
        click.echo()
