"""Chat transcripts: messages, prompt building and log parsing."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, NamedTuple

USER_PREFIX = "Запрос: "
ASSISTANT_PREFIX = "Ответ: "


def _mojibake(text: str) -> str:
    return text.encode("utf-8").decode("cp1251")


_USER_MARKERS = ("Запрос:", _mojibake("Запрос:"), "Request:")
_ASSISTANT_MARKERS = ("Ответ:", _mojibake("Ответ:"), "Response:")


class ChatRole(enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    role: ChatRole
    text: str


@dataclass
class ChatSession:
    """A paused conversation with a model."""

    model: str
    messages: list[ChatMessage] = field(default_factory=list)
    chat_scroll: int = 0
    prompt_buffer: str = ""
    prompt_scroll: int = 0
    prompt_height: int = 3
    paused_at: int = 0
    paused_at_display: str = ""


class ChatStats(NamedTuple):
    last_user_prompt: str
    message_count: int
    total_turns: int


def _lines(text: str) -> list[str]:
    """Split on newlines, dropping a trailing empty line and any trailing CR."""
    if not text:
        return []
    parts = text.split("\n")
    if parts[-1] == "":
        parts.pop()
    return [part.removesuffix("\r") for part in parts]


def _prefix_for(role: ChatRole) -> str:
    return USER_PREFIX if role is ChatRole.USER else ASSISTANT_PREFIX


def append_chat_lines(prefix: str, text: str) -> str:
    """Render one message: prefix on the first line, two-space indent on the rest."""
    lines = _lines(text)
    first, rest = (lines[0], lines[1:]) if lines else ("", [])
    return prefix + first + "\n" + "".join(f"  {line}\n" for line in rest)


def build_chat_log(messages: Iterable[ChatMessage]) -> str:
    """Render a whole conversation as a log text."""
    return "".join(append_chat_lines(_prefix_for(m.role), m.text) for m in messages)


def build_chat_prompt(messages: Iterable[ChatMessage], new_prompt: str) -> str:
    """Render the conversation plus a new request, ending with an open answer."""
    return (
        build_chat_log(messages)
        + append_chat_lines(USER_PREFIX, new_prompt)
        + ASSISTANT_PREFIX
    )


def chat_message_stats(messages: list[ChatMessage]) -> ChatStats:
    """Return the last user prompt, the number of answers and the number of turns."""
    last_prompt = next(
        (m.text for m in reversed(messages) if m.role is ChatRole.USER), ""
    )
    answers = sum(1 for m in messages if m.role is ChatRole.ASSISTANT)
    return ChatStats(last_prompt, answers, len(messages))


def _match_marker(line: str) -> tuple[ChatRole, str] | None:
    for role, markers in (
        (ChatRole.USER, _USER_MARKERS),
        (ChatRole.ASSISTANT, _ASSISTANT_MARKERS),
    ):
        for marker in markers:
            if line.startswith(marker):
                return role, marker
    return None


def parse_chat_log(text: str) -> list[ChatMessage]:
    """Parse a chat log back into messages; empty messages are dropped."""
    messages: list[ChatMessage] = []
    role: ChatRole | None = None
    current = ""

    def flush() -> None:
        body = current.rstrip()
        if role is not None and body:
            messages.append(ChatMessage(role, body))

    for raw in _lines(text):
        line = raw.rstrip().lstrip("\ufeff")
        matched = _match_marker(line)
        if matched is not None:
            flush()
            role, marker = matched
            current = line[len(marker):].lstrip()
            continue
        if role is not None:
            if current:
                current += "\n"
            current += line.removeprefix("  ")

    flush()
    return messages


def read_chat_log(path: str | Path) -> list[ChatMessage]:
    """Read and parse a chat log file; an unreadable file gives no messages."""
    try:
        content = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return []
    return parse_chat_log(content)


def normalize_model_response(text: str) -> str:
    """Turn escaped newline and tab sequences into real ones."""
    return text.replace("\\r\\n", "\n").replace("\\n", "\n").replace("\\t", "\t")


def wrapped_line_count(text: str, width: int) -> int:
    """Count the rows the text occupies when hard-wrapped at the given width."""
    if width == 0:
        return 0
    if not text:
        return 1
    count = 1
    line_len = 0
    for ch in text:
        if ch == "\n":
            count += 1
            line_len = 0
            continue
        line_len += 1
        if line_len > width:
            count += 1
            line_len = 1
    return count