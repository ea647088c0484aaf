"""Key handling for the model-server view, with server calls behind a small interface."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Protocol

from .chat import (
    ChatMessage,
    ChatRole,
    ChatSession,
    build_chat_prompt,
    normalize_model_response,
    read_chat_log,
)
from .keys import InputThrottles, Key, KeyEvent, KeyKind
from .models import (
    ChatLogEntry,
    OllamaModelSortColumn,
    OllamaRunningSortColumn,
    OllamaSnapshot,
    RunningModel,
)
from .ollama_state import (
    MIN_PROMPT_HEIGHT,
    SCROLL_TO_END,
    OllamaActivityView,
    OllamaInputMode,
    OllamaPanelFocus,
    OllamaUIState,
    OllamaView,
    max_chat_prompt_height,
)

log = logging.getLogger(__name__)

PAGE_STEP = 10
CHAT_PAGE_STEP = 5

_SORT_KEYS: dict[str, tuple[OllamaModelSortColumn | None, OllamaRunningSortColumn]] = {
    "n": (OllamaModelSortColumn.NAME, OllamaRunningSortColumn.NAME),
    "m": (OllamaModelSortColumn.PARAMS, OllamaRunningSortColumn.PARAMS),
    "t": (OllamaModelSortColumn.MODIFIED, OllamaRunningSortColumn.PAUSED_AT),
    "g": (None, OllamaRunningSortColumn.MESSAGE_COUNT),
}


class OllamaActions(Protocol):
    """The server operations and persistence the key handler triggers."""

    async def remove_model(self, name: str) -> None:
        """Delete an installed model."""

    async def pull_model(self, name: str) -> None:
        """Download a model."""

    async def stop_model(self, name: str) -> None:
        """Unload a running model."""

    async def execute_command(self, command: str) -> str:
        """Run a server command and return its output."""

    async def run_model(self, model: str, prompt: str) -> str:
        """Send a prompt to a model and return its answer."""

    def save_chat(
        self, model: str, messages: Sequence[ChatMessage], paused: ChatSession | None
    ) -> None:
        """Store a chat transcript; ``paused`` is the session when the chat was paused."""


def delete_chat_log(entry: ChatLogEntry) -> None:
    """Remove a chat log and its metadata file; files already gone are ignored."""
    log_path = Path(entry.path)
    for path in (log_path, log_path.with_suffix(".toml")):
        with contextlib.suppress(OSError):
            path.unlink()


def _clamped_log(snapshot: OllamaSnapshot | None, index: int) -> ChatLogEntry | None:
    logs = snapshot.chat_logs if snapshot is not None else []
    if not logs:
        return None
    return logs[min(index, len(logs) - 1)]


class OllamaKeyHandler:
    """Applies key events to the model-server view's state."""

    def __init__(
        self, state: OllamaUIState, actions: OllamaActions, throttles: InputThrottles
    ) -> None:
        self.state = state
        self.actions = actions
        self.throttles = throttles
        self._background: set[asyncio.Task[None]] = set()

    # --- side effects --------------------------------------------------------

    def _spawn(self, what: str, call: Callable[[str], Awaitable[None]], name: str) -> None:
        async def runner() -> None:
            try:
                await call(name)
            except Exception as exc:  # the view carries on whatever the server says
                log.warning("%s %r failed: %s", what, name, exc)

        task = asyncio.get_running_loop().create_task(runner())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _save(
        self, model: str, messages: Sequence[ChatMessage], paused: ChatSession | None
    ) -> None:
        try:
            self.actions.save_chat(model, messages, paused)
        except Exception as exc:
            log.warning("Failed to save chat with %r: %s", model, exc)

    def _save_transcript(self, transcript: tuple[str, list[ChatMessage]] | None) -> None:
        if transcript is not None:
            model, messages = transcript
            self._save(model, messages, None)

    def _finish_chat(self) -> None:
        self._save_transcript(self.state.finish_chat())

    def _start_chat(self, model_name: str, rows: int, compact: bool) -> None:
        self._save_transcript(self.state.start_chat(model_name, rows, compact))

    def _pause_chat(self) -> None:
        session = self.state.pause_chat(datetime.now().astimezone())
        if session is not None and session.messages:
            self._save(session.model, session.messages, session)

    async def _send_chat_prompt(self, prompt: str) -> None:
        st = self.state
        model = st.active_chat_model
        if model is None:
            return
        full_prompt = build_chat_prompt(st.chat_messages, prompt)
        st.chat_messages.append(ChatMessage(ChatRole.USER, prompt))
        try:
            raw = await self.actions.run_model(model, full_prompt)
        except Exception as exc:
            log.warning("Model %r did not answer: %s", model, exc)
            raw = ""
        response = normalize_model_response((raw or "").strip())
        if response:
            st.chat_messages.append(ChatMessage(ChatRole.ASSISTANT, response))
        st.chat_scroll = SCROLL_TO_END

    async def _run_command(self, command: str) -> None:
        try:
            output = await self.actions.execute_command(command)
        except Exception as exc:
            output = f"Command failed: {exc}"
        self.state.show_command_output(command, output)

    # --- lookups ---------------------------------------------------------------

    @staticmethod
    def _running(snapshot: OllamaSnapshot | None) -> list[RunningModel]:
        return list(snapshot.running_models) if snapshot is not None else []

    def _selected_model_name(self, snapshot: OllamaSnapshot | None) -> str | None:
        models = self.state.sorted_models(snapshot.models if snapshot is not None else [])
        idx = self.state.selected_model_index
        return models[idx].name if idx < len(models) else None

    def _running_name_at_selection(self, snapshot: OllamaSnapshot | None) -> str | None:
        models = self.state.sorted_running_models(self._running(snapshot))
        idx = self.state.selected_running_index
        return models[idx].name if idx < len(models) else None

    # --- entry point -----------------------------------------------------------

    async def handle_key(
        self,
        key: KeyEvent,
        snapshot: OllamaSnapshot | None,
        cols: int,
        rows: int,
        compact: bool,
    ) -> bool:
        """Apply a key; return True if the view consumed it."""
        st = self.state
        if st.show_delete_confirm:
            self._handle_delete_confirm(key, snapshot)
            return True
        if st.focused_panel is OllamaPanelFocus.INPUT or st.input_mode in (
            OllamaInputMode.PULL,
            OllamaInputMode.COMMAND,
        ):
            await self._handle_input_key(key, cols, rows, compact)
            return True
        return await self._handle_panel_key(key, snapshot, rows, compact)

    # --- delete confirmation ---------------------------------------------------

    def _handle_delete_confirm(self, key: KeyEvent, snapshot: OllamaSnapshot | None) -> None:
        st = self.state
        if key.is_char("y") or key.key is Key.ENTER:
            target = st.pending_delete
            if isinstance(target, ChatLogEntry):
                delete_chat_log(target)
                if snapshot is not None:
                    snapshot.chat_logs = [
                        item for item in snapshot.chat_logs if item.path != target.path
                    ]
            elif isinstance(target, str):
                self._spawn("Removing model", self.actions.remove_model, target)
        elif not (key.is_char("n") or key.key is Key.ESC):
            return
        st.pending_delete = None
        st.show_delete_confirm = False

    # --- input line --------------------------------------------------------------

    def _move_focus(self, forward: bool, compact: bool) -> None:
        st = self.state
        if forward:
            st.focused_panel = st.next_focus(st.focused_panel, compact)
        else:
            st.focused_panel = st.prev_focus(st.focused_panel, compact)
        st.maybe_start_activity_expand_timer()

    async def _handle_input_key(self, key: KeyEvent, cols: int, rows: int, compact: bool) -> None:
        st = self.state
        match key.key:
            case Key.TAB if key.is_initial_press():
                self._move_focus(True, compact)
            case Key.BACK_TAB if key.is_initial_press():
                self._move_focus(False, compact)
            case Key.LEFT:
                if self.throttles.horizontal_nav.allow():
                    self._move_focus(False, compact)
            case Key.RIGHT:
                if self.throttles.horizontal_nav.allow():
                    self._move_focus(True, compact)
            case Key.ENTER:
                await self._submit_input()
            case Key.ESC:
                if st.input_mode is OllamaInputMode.CHAT and st.chat_active:
                    self._finish_chat()
                else:
                    st.input_buffer = ""
                    st.input_mode = OllamaInputMode.NONE
                    st.focused_panel = OllamaPanelFocus.MAIN
            case Key.BACKSPACE:
                st.input_buffer = st.input_buffer[:-1]
            case Key.UP | Key.DOWN if st.input_mode is OllamaInputMode.CHAT:
                if self.throttles.widget_scroll.allow():
                    self._resize_prompt(key.key is Key.UP, cols, rows, compact)
            case Key.CHAR:
                if st.input_mode is OllamaInputMode.NONE:
                    return
                if st.input_mode is OllamaInputMode.CHAT:
                    allowed = (
                        key.kind in (KeyKind.PRESS, KeyKind.REPEAT)
                        and self.throttles.text.allow()
                    )
                else:
                    allowed = self.throttles.text.allow()
                if allowed:
                    st.input_buffer += key.char or ""

    def _resize_prompt(self, up: bool, cols: int, rows: int, compact: bool) -> None:
        st = self.state
        max_height = max_chat_prompt_height(rows, compact)
        max_scroll = st.max_chat_prompt_scroll(cols)
        if up:
            if max_scroll > 0 and st.chat_prompt_scroll > 0:
                st.chat_prompt_scroll -= 1
            elif st.chat_prompt_height < max_height:
                st.chat_prompt_height += 1
        elif max_scroll > 0 and st.chat_prompt_scroll < max_scroll:
            st.chat_prompt_scroll += 1
        elif st.chat_prompt_height > MIN_PROMPT_HEIGHT:
            st.chat_prompt_height -= 1

    async def _submit_input(self) -> None:
        st = self.state
        text = st.input_buffer.strip()
        match st.input_mode:
            case OllamaInputMode.PULL:
                if text:
                    self._spawn("Pulling model", self.actions.pull_model, text)
                st.input_buffer = ""
                st.input_mode = OllamaInputMode.NONE
                st.focused_panel = OllamaPanelFocus.MAIN
            case OllamaInputMode.COMMAND:
                if text:
                    await self._run_command(text)
                st.input_buffer = ""
                st.input_mode = OllamaInputMode.NONE
            case OllamaInputMode.CHAT:
                if text:
                    await self._send_chat_prompt(text)
                st.input_buffer = ""
                st.chat_prompt_scroll = 0

    # --- panels ------------------------------------------------------------------

    async def _handle_panel_key(
        self, key: KeyEvent, snapshot: OllamaSnapshot | None, rows: int, compact: bool
    ) -> bool:
        match key.key:
            case Key.CHAR:
                return self._handle_char(key, snapshot, rows, compact)
            case Key.LEFT | Key.RIGHT:
                if self.throttles.horizontal_nav.allow():
                    self._move_focus(key.key is Key.RIGHT, compact)
                return True
            case Key.ENTER:
                return self._handle_enter(snapshot, rows, compact)
            case Key.ESC:
                return self._handle_esc()
            case Key.UP:
                if self.throttles.nav.allow():
                    self._step(-1, snapshot)
                return True
            case Key.DOWN:
                if self.throttles.nav.allow():
                    self._step(1, snapshot)
                return True
            case Key.PAGE_UP:
                if self.throttles.nav.allow():
                    self._page(-1, snapshot)
                return True
            case Key.PAGE_DOWN:
                if self.throttles.nav.allow():
                    self._page(1, snapshot)
                return True
        return False

    def _handle_char(
        self, key: KeyEvent, snapshot: OllamaSnapshot | None, rows: int, compact: bool
    ) -> bool:
        st = self.state
        c = key.char or ""
        initial = key.is_initial_press()

        if c in _SORT_KEYS:
            if not initial or not self.throttles.sort.allow():
                return True
            model_column, running_column = _SORT_KEYS[c]
            if st.focused_panel is OllamaPanelFocus.MAIN and not st.chat_active:
                if st.current_view is OllamaView.MODELS:
                    if model_column is not None:
                        st.toggle_model_sort(model_column)
                else:
                    st.toggle_running_sort(running_column)
            return True

        match c:
            case "a":
                if (
                    initial
                    and st.focused_panel is OllamaPanelFocus.ACTIVITY
                    and st.activity_view is OllamaActivityView.LIST
                ):
                    st.activity_additions_open = True
                    st.activity_additions_selected = 0
                return True
            case "v":
                if not initial or not self.throttles.view_toggle.allow():
                    return True
                if st.chat_active:
                    self._pause_chat()
                    st.current_view = OllamaView.RUNNING
                else:
                    st.current_view = (
                        OllamaView.RUNNING
                        if st.current_view is OllamaView.MODELS
                        else OllamaView.MODELS
                    )
                st.focused_panel = OllamaPanelFocus.MAIN
                return True
            case "r":
                if not initial:
                    return True
                if st.current_view is OllamaView.MODELS:
                    name = self._selected_model_name(snapshot)
                else:
                    name = st.selected_running_model_name(self._running(snapshot))
                if name is not None and not st.resume_chat(name):
                    self._start_chat(name, rows, compact)
                return True
            case "s" | "u":
                name = st.selected_running_model_name(self._running(snapshot))
                if name is not None:
                    if st.active_chat_model == name:
                        self._finish_chat()
                    for pos, session in enumerate(st.paused_chats):
                        if session.model == name:
                            del st.paused_chats[pos]
                            break
                    self._spawn("Stopping model", self.actions.stop_model, name)
                return True
            case "d":
                if not initial:
                    return True
                if (
                    st.focused_panel is OllamaPanelFocus.ACTIVITY
                    and st.activity_view is OllamaActivityView.LIST
                ):
                    entry = _clamped_log(snapshot, st.activity_selected)
                    if entry is not None:
                        st.pending_delete = entry
                        st.show_delete_confirm = True
                    return True
                if st.current_view is OllamaView.RUNNING:
                    return True
                name = self._selected_model_name(snapshot)
                if name is not None:
                    st.pending_delete = name
                    st.show_delete_confirm = True
                return True
            case "p" | "c":
                if initial:
                    st.input_mode = OllamaInputMode.PULL if c == "p" else OllamaInputMode.COMMAND
                    st.input_buffer = ""
                    st.focused_panel = OllamaPanelFocus.INPUT
                return True
            case "l":
                return True
        return False

    def _handle_enter(self, snapshot: OllamaSnapshot | None, rows: int, compact: bool) -> bool:
        st = self.state
        if (
            st.focused_panel is OllamaPanelFocus.ADDITIONS
            and st.activity_additions_open
            and st.activity_view is OllamaActivityView.LIST
        ):
            entry = _clamped_log(snapshot, st.activity_selected)
            if entry is not None:
                messages = read_chat_log(entry.path)
                self._save_transcript(
                    st.restart_chat_from_log(entry.model, messages, rows, compact)
                )
            st.close_activity_additions()
            return True
        if (
            st.focused_panel is OllamaPanelFocus.MAIN
            and st.current_view is OllamaView.RUNNING
            and not st.chat_active
        ):
            name = self._running_name_at_selection(snapshot)
            if name is not None and st.resume_chat(name):
                return True
        return False

    def _handle_esc(self) -> bool:
        st = self.state
        if st.focused_panel is OllamaPanelFocus.ADDITIONS and st.activity_additions_open:
            st.close_activity_additions()
            return True
        if st.focused_panel is OllamaPanelFocus.ACTIVITY:
            if st.activity_view is OllamaActivityView.LIST and st.activity_expand_ready():
                st.activity_expand_suppressed = True
                return True
            if st.activity_view is OllamaActivityView.LOG:
                st.activity_view = OllamaActivityView.LIST
                st.activity_log_lines = []
                st.activity_log_title = ""
                st.activity_log_scroll = 0
                st.maybe_start_activity_expand_timer()
                return True
        return False

    def _widget_scroll(self, current: int, delta: int) -> int | None:
        if not self.throttles.widget_scroll.allow():
            return None
        return min(SCROLL_TO_END, max(0, current + delta))

    def _select_activity(self, index: int) -> None:
        st = self.state
        if index != st.activity_selected:
            st.activity_selected = index
            st.reset_activity_expand_state()

    def _step(self, delta: int, snapshot: OllamaSnapshot | None) -> None:
        st = self.state
        match st.focused_panel:
            case OllamaPanelFocus.MAIN:
                if st.chat_active:
                    moved = self._widget_scroll(st.chat_scroll, delta)
                    if moved is not None:
                        st.chat_scroll = moved
                elif st.current_view is OllamaView.MODELS:
                    count = len(snapshot.models) if snapshot is not None else 0
                    target = st.selected_model_index + delta
                    if 0 <= target < count or (delta < 0 and target >= 0):
                        st.selected_model_index = target
                else:
                    count = len(st.sorted_running_models(self._running(snapshot)))
                    target = st.selected_running_index + delta
                    if 0 <= target < count or (delta < 0 and target >= 0):
                        st.selected_running_index = target
            case OllamaPanelFocus.ACTIVITY:
                if st.activity_view is OllamaActivityView.LIST:
                    count = len(snapshot.chat_logs) if snapshot is not None else 0
                    target = st.activity_selected + delta
                    if 0 <= target < count or (delta < 0 and target >= 0):
                        self._select_activity(target)
                else:
                    moved = self._widget_scroll(st.activity_log_scroll, delta)
                    if moved is not None:
                        st.activity_log_scroll = moved
            case OllamaPanelFocus.VRAM:
                moved = self._widget_scroll(st.running_summary_scroll, delta)
                if moved is not None:
                    st.running_summary_scroll = moved
            case OllamaPanelFocus.ADDITIONS:
                additions_len = 1 if st.activity_additions_open else 0
                target = st.activity_additions_selected + delta
                if 0 <= target < additions_len:
                    st.activity_additions_selected = target

    def _page(self, direction: int, snapshot: OllamaSnapshot | None) -> None:
        st = self.state
        step = PAGE_STEP * direction

        def paged(current: int, count: int | None) -> int:
            if direction < 0:
                return max(0, current + step)
            if not count:
                return current
            return min(current + step, count - 1)

        match st.focused_panel:
            case OllamaPanelFocus.MAIN:
                if st.chat_active:
                    moved = self._widget_scroll(st.chat_scroll, CHAT_PAGE_STEP * direction)
                    if moved is not None:
                        st.chat_scroll = moved
                elif st.current_view is OllamaView.MODELS:
                    count = len(snapshot.models) if snapshot is not None else 0
                    st.selected_model_index = paged(st.selected_model_index, count)
                else:
                    count = len(st.sorted_running_models(self._running(snapshot)))
                    st.selected_running_index = paged(st.selected_running_index, count)
            case OllamaPanelFocus.ACTIVITY:
                if st.activity_view is OllamaActivityView.LIST:
                    count = len(snapshot.chat_logs) if snapshot is not None else 0
                    self._select_activity(paged(st.activity_selected, count))
                else:
                    moved = self._widget_scroll(st.activity_log_scroll, step)
                    if moved is not None:
                        st.activity_log_scroll = moved
            case OllamaPanelFocus.VRAM:
                moved = self._widget_scroll(st.running_summary_scroll, step)
                if moved is not None:
                    st.running_summary_scroll = moved