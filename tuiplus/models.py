"""Ollama model records, parameter-size parsing and table sorting."""

from __future__ import annotations

import enum
import math
import sys
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .chat import ChatMessage, ChatRole, ChatSession

_UNIT_RANK = {"M": 0, "B": 1, "T": 2}
_UNRANKED = 255
_MISSING_VALUE = sys.float_info.max
_NOT_PAUSED = 0xFFFF_FFFF_FFFF_FFFF
_DIGITS = frozenset("0123456789.")


@dataclass
class OllamaModel:
    """An installed model."""

    name: str
    modified: str = ""
    params_value: float | None = None
    params_unit: str | None = None
    params_display: str = "-"


@dataclass
class RunningModel:
    """A model currently loaded (or shown as loaded) by the server."""

    name: str
    size_bytes: int = 0
    size_display: str = "-"
    gpu_memory_mb: float | None = None
    gpu_memory_display: str = "-"
    params_value: float | None = None
    params_unit: str | None = None
    params_display: str = "-"
    processor: str = ""
    until: str | None = None


@dataclass
class ChatLogEntry:
    """A saved chat transcript on disk."""

    model: str
    path: str
    ended_at: int = 0
    ended_at_display: str = ""


@dataclass
class OllamaSnapshot:
    """The latest data collected from the model server."""

    models: list[OllamaModel] = field(default_factory=list)
    running_models: list[RunningModel] = field(default_factory=list)
    chat_logs: list[ChatLogEntry] = field(default_factory=list)


class OllamaModelSortColumn(enum.Enum):
    NAME = "name"
    PARAMS = "params"
    MODIFIED = "modified"


class OllamaRunningSortColumn(enum.Enum):
    NAME = "name"
    PARAMS = "params"
    PAUSED_AT = "paused_at"
    MESSAGE_COUNT = "message_count"


def format_param_display(value: float, unit: str) -> str:
    """Render a parameter count such as ``7B`` or ``1.5B``."""
    fraction, _ = math.modf(value)
    if abs(fraction) < sys.float_info.epsilon:
        return f"{value:.0f}{unit}"
    text = f"{value:.2f}".rstrip("0").removesuffix(".")
    return f"{text}{unit}"


def parse_params_from_name(name: str) -> tuple[float | None, str | None, str]:
    """Find the first ``<number><M|B|T>`` in a model name.

    Returns the value, the upper-case unit and a display string, or
    ``(None, None, "-")`` when the name carries no size.
    """
    for idx, ch in enumerate(name):
        if ch not in "MBTmbt" or idx == 0:
            continue
        start = idx
        while start > 0 and name[start - 1] in _DIGITS:
            start -= 1
        if start == idx:
            continue
        try:
            value = float(name[start:idx])
        except ValueError:
            continue
        unit = ch.upper()
        return value, unit, format_param_display(value, unit)
    return None, None, "-"


def params_sort_key(unit: str | None, value: float | None) -> tuple[int, float]:
    """Order by unit (M < B < T < unknown), then by value; missing values sort last."""
    rank = _UNIT_RANK.get(unit.upper(), _UNRANKED) if unit else _UNRANKED
    return rank, _MISSING_VALUE if value is None else value


def build_running_placeholder(model_name: str, processor: str) -> RunningModel:
    """A running-table row for a model known only from a chat session."""
    value, unit, display = parse_params_from_name(model_name)
    is_cloud = "cloud" in model_name.lower()
    return RunningModel(
        name=model_name,
        size_bytes=0,
        size_display="-",
        gpu_memory_mb=None,
        gpu_memory_display="cloud" if is_cloud else "-",
        params_value=value,
        params_unit=unit,
        params_display=display,
        processor=processor,
        until=None,
    )


def sort_ollama_models(
    models: Iterable[OllamaModel], column: OllamaModelSortColumn, ascending: bool
) -> list[OllamaModel]:
    """Return the models sorted by ``column``; ties keep their order."""
    if column is OllamaModelSortColumn.NAME:
        key = lambda m: m.name.lower()  # noqa: E731
    elif column is OllamaModelSortColumn.PARAMS:
        key = lambda m: params_sort_key(m.params_unit, m.params_value)  # noqa: E731
    else:
        key = lambda m: m.modified.lower()  # noqa: E731
    return sorted(models, key=key, reverse=not ascending)


def _answer_count(messages: Iterable[ChatMessage]) -> int:
    return sum(1 for m in messages if m.role is ChatRole.ASSISTANT)


def sort_ollama_running(
    models: Iterable[RunningModel],
    column: OllamaRunningSortColumn,
    ascending: bool,
    paused_chats: Sequence[ChatSession],
    active_chat_model: str | None,
    active_messages: Sequence[ChatMessage],
) -> list[RunningModel]:
    """Return the running models sorted by ``column``; ties keep their order.

    Pause time and answer counts come from the paused sessions and the active chat.
    """
    paused_at = {session.model: session.paused_at for session in paused_chats}
    answers = {session.model: _answer_count(session.messages) for session in paused_chats}
    if active_chat_model is not None:
        answers[active_chat_model] = _answer_count(active_messages)

    if column is OllamaRunningSortColumn.NAME:
        key = lambda m: m.name.lower()  # noqa: E731
    elif column is OllamaRunningSortColumn.PARAMS:
        key = lambda m: params_sort_key(m.params_unit, m.params_value)  # noqa: E731
    elif column is OllamaRunningSortColumn.PAUSED_AT:
        key = lambda m: paused_at.get(m.name, _NOT_PAUSED)  # noqa: E731
    else:
        key = lambda m: answers.get(m.name, 0)  # noqa: E731
    return sorted(models, key=key, reverse=not ascending)