"""Interface state of the model-server view: focus, sorting, chat sessions and activity log."""

from __future__ import annotations

import enum
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Sequence

from .chat import ChatMessage, ChatSession, wrapped_line_count
from .models import (
    ChatLogEntry,
    OllamaModel,
    OllamaModelSortColumn,
    OllamaRunningSortColumn,
    RunningModel,
    build_running_placeholder,
    sort_ollama_models,
    sort_ollama_running,
)

MIN_PROMPT_HEIGHT = 3
SCROLL_TO_END = sys.maxsize
EXPAND_DELAY = 2.0
_MIN_MAIN_HEIGHT = 10


class OllamaView(enum.Enum):
    MODELS = "models"
    RUNNING = "running"


class OllamaPanelFocus(enum.Enum):
    MAIN = "main"
    VRAM = "vram"
    ACTIVITY = "activity"
    ADDITIONS = "additions"
    HELP = "help"
    INPUT = "input"


class OllamaInputMode(enum.Enum):
    NONE = "none"
    PULL = "pull"
    COMMAND = "command"
    CHAT = "chat"


class OllamaActivityView(enum.Enum):
    LIST = "list"
    LOG = "log"


def suggested_chat_prompt_height(rows: int, compact: bool) -> int:
    """Prompt height that takes about half of the space left for the view."""
    fixed = 3 if compact else 3 + 8 + 5
    available = max(0, rows - fixed)
    half = available // 2
    max_prompt = max(max(0, rows - (fixed + _MIN_MAIN_HEIGHT)), MIN_PROMPT_HEIGHT)
    return min(max(half, MIN_PROMPT_HEIGHT), max_prompt)


def max_chat_prompt_height(rows: int, compact: bool) -> int:
    """The tallest the chat prompt may grow for a terminal of ``rows`` rows."""
    reserved = 3 + 6 if compact else 3 + 8 + 5 + 10
    return max(max(0, rows - reserved), MIN_PROMPT_HEIGHT)


def _output_lines(text: str) -> list[str]:
    if not text:
        return []
    parts = text.split("\n")
    if parts[-1] == "":
        parts.pop()
    return [part.removesuffix("\r") for part in parts]


Transcript = tuple[str, list[ChatMessage]]


@dataclass
class OllamaUIState:
    """Everything the model-server view remembers between frames."""

    selected_model_index: int = 0
    selected_running_index: int = 0
    current_view: OllamaView = OllamaView.MODELS
    focused_panel: OllamaPanelFocus = OllamaPanelFocus.MAIN
    input_mode: OllamaInputMode = OllamaInputMode.NONE
    input_buffer: str = ""
    chat_active: bool = False
    active_chat_model: str | None = None
    chat_messages: list[ChatMessage] = field(default_factory=list)
    chat_scroll: int = 0
    activity_view: OllamaActivityView = OllamaActivityView.LIST
    activity_selected: int = 0
    activity_log_scroll: int = 0
    activity_log_lines: list[str] = field(default_factory=list)
    activity_log_title: str = ""
    activity_expand_started_at: float | None = None
    activity_expand_row: int | None = None
    activity_expand_suppressed: bool = False
    activity_additions_open: bool = False
    activity_additions_selected: int = 0
    model_sort_column: OllamaModelSortColumn = OllamaModelSortColumn.NAME
    model_sort_ascending: bool = True
    running_sort_column: OllamaRunningSortColumn = OllamaRunningSortColumn.NAME
    running_sort_ascending: bool = True
    running_summary_scroll: int = 0
    chat_prompt_height: int = MIN_PROMPT_HEIGHT
    chat_prompt_scroll: int = 0
    paused_chats: list[ChatSession] = field(default_factory=list)
    pending_delete: str | ChatLogEntry | None = None
    show_delete_confirm: bool = False
    clock: Callable[[], float] = field(default=time.monotonic, repr=False, compare=False)

    # --- prompt geometry -------------------------------------------------

    def max_chat_prompt_scroll(self, cols: int) -> int:
        """How far the prompt can scroll for a terminal ``cols`` wide."""
        width = max(0, cols - 2)
        line_count = wrapped_line_count(f"chat {self.input_buffer}_", width)
        return max(0, line_count - self.chat_prompt_height)

    def update_terminal_size(self, cols: int, rows: int, compact: bool) -> None:
        """Refit the chat prompt after the terminal was resized."""
        if self.input_mode is not OllamaInputMode.CHAT:
            return
        self.chat_prompt_height = suggested_chat_prompt_height(rows, compact)
        self.chat_prompt_scroll = min(self.chat_prompt_scroll, self.max_chat_prompt_scroll(cols))

    # --- focus -------------------------------------------------------------

    def next_focus(self, current: OllamaPanelFocus, compact: bool) -> OllamaPanelFocus:
        """The panel that follows ``current`` in the focus cycle."""
        F = OllamaPanelFocus
        if compact:
            nxt = {F.MAIN: F.HELP, F.HELP: F.INPUT, F.INPUT: F.MAIN, F.ADDITIONS: F.HELP}.get(
                current, F.MAIN
            )
        else:
            nxt = {
                F.MAIN: F.VRAM,
                F.VRAM: F.ACTIVITY,
                F.ACTIVITY: F.ADDITIONS if self.activity_additions_open else F.HELP,
                F.ADDITIONS: F.HELP,
                F.HELP: F.INPUT,
                F.INPUT: F.MAIN,
            }[current]
        if nxt is F.INPUT and self.input_mode is OllamaInputMode.NONE:
            return F.MAIN
        return nxt

    def prev_focus(self, current: OllamaPanelFocus, compact: bool) -> OllamaPanelFocus:
        """The panel that precedes ``current`` in the focus cycle."""
        F = OllamaPanelFocus
        if compact:
            prev = {F.MAIN: F.INPUT, F.INPUT: F.HELP, F.HELP: F.MAIN, F.ADDITIONS: F.HELP}.get(
                current, F.HELP
            )
        else:
            prev = {
                F.MAIN: F.INPUT,
                F.INPUT: F.HELP,
                F.HELP: F.ADDITIONS if self.activity_additions_open else F.ACTIVITY,
                F.ADDITIONS: F.ACTIVITY,
                F.ACTIVITY: F.VRAM,
                F.VRAM: F.MAIN,
            }[current]
        if prev is F.INPUT and self.input_mode is OllamaInputMode.NONE:
            return F.HELP
        return prev

    # --- activity panel ------------------------------------------------------

    def close_activity_additions(self) -> None:
        """Close the additions popup, moving focus back to the activity list if needed."""
        self.activity_additions_open = False
        self.activity_additions_selected = 0
        if self.focused_panel is OllamaPanelFocus.ADDITIONS:
            self.focused_panel = OllamaPanelFocus.ACTIVITY

    def reset_activity_expand_state(self) -> None:
        """Restart the expand timer for the selected row and lift any suppression."""
        self.activity_expand_started_at = self.clock()
        self.activity_expand_row = self.activity_selected
        self.activity_expand_suppressed = False

    def maybe_start_activity_expand_timer(self) -> None:
        """Start the expand timer if the activity list has focus and expanding is allowed."""
        if self.activity_expand_suppressed:
            return
        if self.activity_view is not OllamaActivityView.LIST:
            return
        if self.focused_panel is not OllamaPanelFocus.ACTIVITY:
            return
        self.activity_expand_started_at = self.clock()
        self.activity_expand_row = self.activity_selected

    def activity_expand_ready(self) -> bool:
        """True once the selected activity row has been focused long enough to expand."""
        if self.activity_expand_suppressed:
            return False
        if self.activity_view is not OllamaActivityView.LIST:
            return False
        if self.focused_panel is not OllamaPanelFocus.ACTIVITY:
            return False
        if self.activity_expand_row != self.activity_selected:
            return False
        if self.activity_expand_started_at is None:
            return False
        return self.clock() - self.activity_expand_started_at >= EXPAND_DELAY

    def _reset_activity_view(self) -> None:
        self.activity_view = OllamaActivityView.LIST
        self.activity_log_lines.clear()
        self.activity_log_title = ""
        self.activity_log_scroll = 0
        self.close_activity_additions()

    def show_command_output(self, command: str, output: str) -> None:
        """Show a command's output in the activity panel's log view."""
        lines = _output_lines(output) or ["No output"]
        self.activity_view = OllamaActivityView.LOG
        self.activity_log_lines = lines
        self.activity_log_title = f"Command: {command}"
        self.activity_log_scroll = 0
        self.focused_panel = OllamaPanelFocus.ACTIVITY
        self.close_activity_additions()

    # --- sorting -----------------------------------------------------------

    def toggle_model_sort(self, column: OllamaModelSortColumn) -> None:
        """Flip the direction for the current column, or switch to a new one ascending."""
        if self.model_sort_column is column:
            self.model_sort_ascending = not self.model_sort_ascending
        else:
            self.model_sort_column = column
            self.model_sort_ascending = True

    def toggle_running_sort(self, column: OllamaRunningSortColumn) -> None:
        """Flip the direction for the current column, or switch to a new one ascending."""
        if self.running_sort_column is column:
            self.running_sort_ascending = not self.running_sort_ascending
        else:
            self.running_sort_column = column
            self.running_sort_ascending = True

    def sorted_models(self, models: Iterable[OllamaModel]) -> list[OllamaModel]:
        """The installed models in the current sort order."""
        return sort_ollama_models(models, self.model_sort_column, self.model_sort_ascending)

    def sorted_running_models(self, running: Iterable[RunningModel]) -> list[RunningModel]:
        """Running models plus rows for paused and active chats, in the current sort order."""
        models = list(running)
        known = {model.name.lower() for model in models}
        for session in self.paused_chats:
            lowered = session.model.lower()
            if lowered not in known:
                models.append(build_running_placeholder(session.model, "Paused"))
                known.add(lowered)
        active = self.active_chat_model
        if active is not None and active.lower() not in known:
            models.append(build_running_placeholder(active, "Running"))
        return sort_ollama_running(
            models,
            self.running_sort_column,
            self.running_sort_ascending,
            self.paused_chats,
            self.active_chat_model,
            self.chat_messages,
        )

    def selected_running_model_name(self, running: Sequence[RunningModel]) -> str | None:
        """Name of the selected running row, clamped to the table; None if it is empty."""
        models = self.sorted_running_models(running)
        if not models:
            return None
        return models[min(self.selected_running_index, len(models) - 1)].name

    # --- chat sessions -----------------------------------------------------

    def start_chat(self, model_name: str, rows: int, compact: bool) -> Transcript | None:
        """Open a fresh chat with ``model_name``.

        Returns the transcript of a chat that was ended to make room, if any.
        """
        finished: Transcript | None = None
        if self.chat_active and self.chat_messages:
            finished = self.finish_chat()
        else:
            self.chat_messages.clear()

        self.chat_active = True
        self.active_chat_model = model_name
        self.chat_messages = []
        self.chat_scroll = 0
        self.chat_prompt_scroll = 0
        self.chat_prompt_height = suggested_chat_prompt_height(rows, compact)
        self.input_mode = OllamaInputMode.CHAT
        self.input_buffer = ""
        self.focused_panel = OllamaPanelFocus.INPUT
        self._reset_activity_view()
        return finished

    def finish_chat(self) -> Transcript | None:
        """End the active chat; return ``(model, messages)`` if there is something to save."""
        transcript: Transcript | None = None
        if self.active_chat_model is not None and self.chat_messages:
            transcript = (self.active_chat_model, list(self.chat_messages))

        self.chat_active = False
        self.active_chat_model = None
        self.chat_messages = []
        self.chat_scroll = 0
        self.chat_prompt_scroll = 0
        self.chat_prompt_height = MIN_PROMPT_HEIGHT
        self.input_mode = OllamaInputMode.NONE
        self.input_buffer = ""
        self.focused_panel = OllamaPanelFocus.MAIN
        self._reset_activity_view()
        return transcript

    def pause_chat(self, now: datetime) -> ChatSession | None:
        """Park the active chat as a paused session and return it; None if no chat is active."""
        if not self.chat_active or self.active_chat_model is None:
            return None
        model_name = self.active_chat_model
        session = ChatSession(
            model=model_name,
            messages=list(self.chat_messages),
            chat_scroll=self.chat_scroll,
            prompt_buffer=self.input_buffer,
            prompt_scroll=self.chat_prompt_scroll,
            prompt_height=self.chat_prompt_height,
            paused_at=int(now.timestamp()),
            paused_at_display=now.strftime("%Y-%m-%d %H:%M"),
        )
        for pos, existing in enumerate(self.paused_chats):
            if existing.model == model_name:
                self.paused_chats[pos] = session
                break
        else:
            self.paused_chats.append(session)

        self.chat_active = False
        self.active_chat_model = None
        self.chat_messages = []
        self.chat_scroll = 0
        self.input_mode = OllamaInputMode.NONE
        self.input_buffer = ""
        self.chat_prompt_scroll = 0
        self.chat_prompt_height = MIN_PROMPT_HEIGHT
        self.focused_panel = OllamaPanelFocus.MAIN
        self._reset_activity_view()
        return session

    def resume_chat(self, model_name: str) -> bool:
        """Bring back the paused session for ``model_name``; False if there is none."""
        for pos, session in enumerate(self.paused_chats):
            if session.model == model_name:
                break
        else:
            return False
        session = self.paused_chats.pop(pos)

        self.chat_active = True
        self.active_chat_model = session.model
        self.chat_messages = list(session.messages)
        self.chat_scroll = session.chat_scroll
        self.input_mode = OllamaInputMode.CHAT
        self.input_buffer = session.prompt_buffer
        self.chat_prompt_scroll = session.prompt_scroll
        self.chat_prompt_height = max(session.prompt_height, MIN_PROMPT_HEIGHT)
        self.focused_panel = OllamaPanelFocus.INPUT
        self._reset_activity_view()
        return True

    def restart_chat_from_log(
        self,
        model_name: str,
        messages: Sequence[ChatMessage],
        rows: int,
        compact: bool,
    ) -> Transcript | None:
        """Start a chat pre-filled with ``messages`` and scrolled to the end."""
        finished = self.start_chat(model_name, rows, compact)
        self.chat_messages = list(messages)
        self.chat_scroll = SCROLL_TO_END
        return finished