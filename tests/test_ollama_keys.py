import asyncio
import itertools

import pytest

from tuiplus.chat import ChatMessage, ChatRole, build_chat_prompt
from tuiplus.keys import InputThrottles, Key, KeyEvent, KeyKind
from tuiplus.models import (
    ChatLogEntry,
    OllamaModel,
    OllamaModelSortColumn,
    OllamaRunningSortColumn,
    OllamaSnapshot,
)
from tuiplus.ollama_keys import OllamaKeyHandler, delete_chat_log
from tuiplus.ollama_state import (
    SCROLL_TO_END,
    OllamaActivityView,
    OllamaInputMode,
    OllamaPanelFocus,
    OllamaUIState,
    OllamaView,
    max_chat_prompt_height,
)

COLS, ROWS = 120, 40


class FakeActions:
    def __init__(self, command_output="", command_error=None, response=""):
        self.command_output = command_output
        self.command_error = command_error
        self.response = response
        self.removed = []
        self.pulled = []
        self.stopped = []
        self.commands = []
        self.prompts = []
        self.saved = []

    async def remove_model(self, name):
        self.removed.append(name)

    async def pull_model(self, name):
        self.pulled.append(name)

    async def stop_model(self, name):
        self.stopped.append(name)

    async def execute_command(self, command):
        self.commands.append(command)
        if self.command_error:
            raise RuntimeError(self.command_error)
        return self.command_output

    async def run_model(self, model, prompt):
        self.prompts.append((model, prompt))
        return self.response

    def save_chat(self, model, messages, paused):
        self.saved.append((model, list(messages), paused))


def ticking():
    counter = itertools.count(start=100.0, step=10.0)
    return lambda: next(counter)


def make(actions=None, clock=None):
    state = OllamaUIState()
    throttles = InputThrottles(clock or ticking())
    return OllamaKeyHandler(state, actions or FakeActions(), throttles)


async def press(handler, key, snapshot=None):
    return await handler.handle_key(key, snapshot, COLS, ROWS, False)


async def type_text(handler, text, snapshot=None):
    for ch in text:
        await press(handler, KeyEvent.of_char(ch), snapshot)


async def settle():
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_pull_spawns_download_with_trimmed_name():
    actions = FakeActions()
    handler = make(actions)
    assert await press(handler, KeyEvent.of_char("p"))
    assert handler.state.input_mode is OllamaInputMode.PULL
    assert handler.state.focused_panel is OllamaPanelFocus.INPUT
    await type_text(handler, " llama3 ")
    await press(handler, KeyEvent(Key.ENTER))
    await settle()
    assert actions.pulled == ["llama3"]
    assert handler.state.input_mode is OllamaInputMode.NONE
    assert handler.state.focused_panel is OllamaPanelFocus.MAIN
    assert handler.state.input_buffer == ""


@pytest.mark.asyncio
async def test_command_output_goes_to_activity_log():
    actions = FakeActions(command_output="one\ntwo\n")
    handler = make(actions)
    await press(handler, KeyEvent.of_char("c"))
    await type_text(handler, "list")
    await press(handler, KeyEvent(Key.ENTER))
    assert actions.commands == ["list"]
    st = handler.state
    assert st.activity_view is OllamaActivityView.LOG
    assert st.activity_log_lines == ["one", "two"]
    assert st.activity_log_title == "Command: list"
    assert st.focused_panel is OllamaPanelFocus.ACTIVITY
    assert st.input_mode is OllamaInputMode.NONE


@pytest.mark.asyncio
async def test_failed_command_reports_error():
    handler = make(FakeActions(command_error="boom"))
    await press(handler, KeyEvent.of_char("c"))
    await type_text(handler, "ps")
    await press(handler, KeyEvent(Key.ENTER))
    assert handler.state.activity_log_lines == ["Command failed: boom"]


@pytest.mark.asyncio
async def test_chat_round_trip_and_finish_saves():
    actions = FakeActions(response="  line1\\nline2  ")
    handler = make(actions)
    snapshot = OllamaSnapshot(models=[OllamaModel("llama3:8b")])
    await press(handler, KeyEvent.of_char("r"), snapshot)
    st = handler.state
    assert st.chat_active and st.active_chat_model == "llama3:8b"
    await type_text(handler, "hi", snapshot)
    assert st.input_buffer == "hi"
    await press(handler, KeyEvent(Key.ENTER), snapshot)
    assert actions.prompts == [("llama3:8b", build_chat_prompt([], "hi"))]
    assert st.chat_messages == [
        ChatMessage(ChatRole.USER, "hi"),
        ChatMessage(ChatRole.ASSISTANT, "line1\nline2"),
    ]
    assert st.chat_scroll == SCROLL_TO_END

    await press(handler, KeyEvent(Key.ESC), snapshot)
    assert not st.chat_active
    assert len(actions.saved) == 1
    model, messages, paused = actions.saved[0]
    assert model == "llama3:8b"
    assert len(messages) == 2
    assert paused is None


@pytest.mark.asyncio
async def test_pause_then_resume_from_running_view():
    actions = FakeActions(response="ok")
    handler = make(actions)
    snapshot = OllamaSnapshot(models=[OllamaModel("qwen:7b")])
    await press(handler, KeyEvent.of_char("r"), snapshot)
    await type_text(handler, "q", snapshot)
    await press(handler, KeyEvent(Key.ENTER), snapshot)
    await press(handler, KeyEvent(Key.TAB), snapshot)
    st = handler.state
    assert st.focused_panel is OllamaPanelFocus.MAIN

    await press(handler, KeyEvent.of_char("v"), snapshot)
    assert not st.chat_active
    assert st.current_view is OllamaView.RUNNING
    assert [s.model for s in st.paused_chats] == ["qwen:7b"]
    assert actions.saved[-1][2] is st.paused_chats[0]

    assert await press(handler, KeyEvent(Key.ENTER), snapshot)
    assert st.chat_active
    assert st.active_chat_model == "qwen:7b"
    assert len(st.chat_messages) == 2
    assert st.paused_chats == []


@pytest.mark.asyncio
async def test_stop_removes_paused_session_and_stops_model():
    actions = FakeActions(response="ok")
    handler = make(actions)
    snapshot = OllamaSnapshot(models=[OllamaModel("phi:3b")])
    await press(handler, KeyEvent.of_char("r"), snapshot)
    await press(handler, KeyEvent(Key.TAB), snapshot)
    await press(handler, KeyEvent.of_char("v"), snapshot)
    assert len(handler.state.paused_chats) == 1
    assert await press(handler, KeyEvent.of_char("s"), snapshot)
    await settle()
    assert actions.stopped == ["phi:3b"]
    assert handler.state.paused_chats == []


@pytest.mark.asyncio
async def test_delete_model_after_confirmation():
    actions = FakeActions()
    handler = make(actions)
    snapshot = OllamaSnapshot(models=[OllamaModel("zeta"), OllamaModel("alpha")])
    await press(handler, KeyEvent.of_char("d"), snapshot)
    assert handler.state.pending_delete == "alpha"
    assert handler.state.show_delete_confirm
    await press(handler, KeyEvent.of_char("y"), snapshot)
    await settle()
    assert actions.removed == ["alpha"]
    assert handler.state.pending_delete is None
    assert not handler.state.show_delete_confirm


@pytest.mark.asyncio
async def test_delete_cancelled_with_n():
    actions = FakeActions()
    handler = make(actions)
    snapshot = OllamaSnapshot(models=[OllamaModel("alpha")])
    await press(handler, KeyEvent.of_char("d"), snapshot)
    await press(handler, KeyEvent.of_char("n"), snapshot)
    await settle()
    assert actions.removed == []
    assert not handler.state.show_delete_confirm


@pytest.mark.asyncio
async def test_delete_chat_log_from_activity_panel(tmp_path):
    log_file = tmp_path / "chat.log"
    meta_file = tmp_path / "chat.toml"
    log_file.write_text("x", encoding="utf-8")
    meta_file.write_text("x", encoding="utf-8")
    entry = ChatLogEntry(model="m", path=str(log_file))
    other = ChatLogEntry(model="o", path=str(tmp_path / "other.log"))
    snapshot = OllamaSnapshot(chat_logs=[entry, other])
    handler = make()
    handler.state.focused_panel = OllamaPanelFocus.ACTIVITY
    await press(handler, KeyEvent.of_char("d"), snapshot)
    assert handler.state.pending_delete == entry
    await press(handler, KeyEvent(Key.ENTER), snapshot)
    assert not log_file.exists()
    assert not meta_file.exists()
    assert snapshot.chat_logs == [other]


def test_delete_chat_log_tolerates_missing_metadata(tmp_path):
    log_file = tmp_path / "only.log"
    log_file.write_text("x", encoding="utf-8")
    delete_chat_log(ChatLogEntry(model="m", path=str(log_file)))
    assert not log_file.exists()
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_restart_chat_from_log_via_additions(tmp_path):
    log_file = tmp_path / "c.log"
    log_file.write_text("Запрос: hello\nОтвет: world\n", encoding="utf-8")
    entry = ChatLogEntry(model="llama3", path=str(log_file))
    snapshot = OllamaSnapshot(chat_logs=[entry])
    handler = make()
    st = handler.state
    st.focused_panel = OllamaPanelFocus.ACTIVITY
    await press(handler, KeyEvent.of_char("a"), snapshot)
    assert st.activity_additions_open
    await press(handler, KeyEvent(Key.RIGHT), snapshot)
    assert st.focused_panel is OllamaPanelFocus.ADDITIONS
    assert await press(handler, KeyEvent(Key.ENTER), snapshot)
    assert st.chat_active
    assert st.active_chat_model == "llama3"
    assert st.chat_messages == [
        ChatMessage(ChatRole.USER, "hello"),
        ChatMessage(ChatRole.ASSISTANT, "world"),
    ]
    assert st.chat_scroll == SCROLL_TO_END
    assert not st.activity_additions_open


@pytest.mark.asyncio
async def test_prompt_height_grows_and_shrinks():
    handler = make()
    snapshot = OllamaSnapshot(models=[OllamaModel("m")])
    await press(handler, KeyEvent.of_char("r"), snapshot)
    st = handler.state
    before = st.chat_prompt_height
    await press(handler, KeyEvent(Key.UP), snapshot)
    assert st.chat_prompt_height == before + 1
    assert st.chat_prompt_height <= max_chat_prompt_height(ROWS, False)
    await press(handler, KeyEvent(Key.DOWN), snapshot)
    assert st.chat_prompt_height == before


@pytest.mark.asyncio
async def test_chat_ignores_key_release_but_command_does_not():
    handler = make()
    snapshot = OllamaSnapshot(models=[OllamaModel("m")])
    await press(handler, KeyEvent.of_char("r"), snapshot)
    await press(handler, KeyEvent.of_char("x", kind=KeyKind.RELEASE), snapshot)
    assert handler.state.input_buffer == ""

    other = make()
    await press(other, KeyEvent.of_char("c"))
    await press(other, KeyEvent.of_char("x", kind=KeyKind.RELEASE))
    assert other.state.input_buffer == "x"


@pytest.mark.asyncio
async def test_backspace_and_escape_in_pull_mode():
    handler = make()
    await press(handler, KeyEvent.of_char("p"))
    await type_text(handler, "ab")
    await press(handler, KeyEvent(Key.BACKSPACE))
    assert handler.state.input_buffer == "a"
    await press(handler, KeyEvent(Key.ESC))
    assert handler.state.input_buffer == ""
    assert handler.state.input_mode is OllamaInputMode.NONE
    assert handler.state.focused_panel is OllamaPanelFocus.MAIN


@pytest.mark.asyncio
async def test_sort_keys_toggle_columns():
    handler = make()
    st = handler.state
    await press(handler, KeyEvent.of_char("n"))
    assert st.model_sort_column is OllamaModelSortColumn.NAME
    assert st.model_sort_ascending is False
    await press(handler, KeyEvent.of_char("m"))
    assert st.model_sort_column is OllamaModelSortColumn.PARAMS
    assert st.model_sort_ascending is True
    await press(handler, KeyEvent.of_char("g"))
    assert st.model_sort_column is OllamaModelSortColumn.PARAMS
    st.current_view = OllamaView.RUNNING
    await press(handler, KeyEvent.of_char("g"))
    assert st.running_sort_column is OllamaRunningSortColumn.MESSAGE_COUNT


@pytest.mark.asyncio
async def test_sort_toggle_is_throttled():
    handler = make(clock=lambda: 0.0)
    await press(handler, KeyEvent.of_char("n"))
    await press(handler, KeyEvent.of_char("n"))
    assert handler.state.model_sort_ascending is False


@pytest.mark.asyncio
async def test_focus_cycle_with_arrows():
    handler = make()
    st = handler.state
    await press(handler, KeyEvent(Key.RIGHT))
    assert st.focused_panel is OllamaPanelFocus.VRAM
    await press(handler, KeyEvent(Key.RIGHT))
    assert st.focused_panel is OllamaPanelFocus.ACTIVITY
    st.focused_panel = OllamaPanelFocus.MAIN
    await press(handler, KeyEvent(Key.LEFT))
    assert st.focused_panel is OllamaPanelFocus.HELP


@pytest.mark.asyncio
async def test_unhandled_keys_fall_through():
    handler = make()
    assert await press(handler, KeyEvent(Key.F2)) is False
    assert await press(handler, KeyEvent(Key.ESC)) is False
    assert await press(handler, KeyEvent.of_char("l")) is True


@pytest.mark.asyncio
async def test_model_selection_is_bounded():
    handler = make()
    snapshot = OllamaSnapshot(models=[OllamaModel("a"), OllamaModel("b")])
    for _ in range(3):
        await press(handler, KeyEvent(Key.DOWN), snapshot)
    assert handler.state.selected_model_index == len(snapshot.models) - 1
    for _ in range(3):
        await press(handler, KeyEvent(Key.UP), snapshot)
    assert handler.state.selected_model_index == 0


@pytest.mark.asyncio
async def test_page_down_in_activity_list_clamps_and_starts_timer():
    handler = make()
    st = handler.state
    st.focused_panel = OllamaPanelFocus.ACTIVITY
    logs = [ChatLogEntry(model=f"m{i}", path=f"p{i}") for i in range(3)]
    snapshot = OllamaSnapshot(chat_logs=logs)
    await press(handler, KeyEvent(Key.PAGE_DOWN), snapshot)
    assert st.activity_selected == len(logs) - 1
    assert st.activity_expand_row == st.activity_selected
    assert st.activity_expand_started_at is not None


@pytest.mark.asyncio
async def test_escape_leaves_activity_log_view():
    handler = make()
    st = handler.state
    st.show_command_output("x", "a\nb")
    assert await press(handler, KeyEvent(Key.ESC))
    assert st.activity_view is OllamaActivityView.LIST
    assert st.activity_log_lines == []
    assert st.activity_log_title == ""