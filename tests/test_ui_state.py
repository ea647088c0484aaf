import pytest

from tuiplus.keys import InputThrottles, Key, KeyEvent, KeyKind
from tuiplus.ui_state import (
    PAGE_STEP,
    GpuProcessSortColumn,
    GpuUIState,
    ProcessesUIState,
    ProcessSortColumn,
    RamPanelFocus,
    RamProcessSortColumn,
    RamUIState,
    ServiceSortColumn,
    ServicesPanelFocus,
    ServicesUIState,
    ServiceStatusFilter,
)


class StepClock:
    """Advances by a full second on every reading, so no throttle ever blocks."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        self.now += 1.0
        return self.now


class FixedClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def free():
    return InputThrottles(StepClock())


def key(k):
    return KeyEvent(k)


def char(c, kind=KeyKind.PRESS):
    return KeyEvent.of_char(c, kind)


def test_processes_defaults():
    state = ProcessesUIState()
    assert state.sort_column is ProcessSortColumn.CPU
    assert state.sort_ascending is False
    assert state.filter == ""


def test_processes_down_stops_at_last(free):
    state = ProcessesUIState()
    count = 3
    for _ in range(count + 2):
        assert state.handle_key(key(Key.DOWN), count, free) is True
    assert state.selected_index == count - 1


def test_processes_up_pulls_scroll_offset(free):
    state = ProcessesUIState(selected_index=5, scroll_offset=5)
    state.handle_key(key(Key.UP), 10, free)
    assert state.selected_index == state.scroll_offset == 4


def test_processes_page_down_clamps_and_page_up_resets(free):
    state = ProcessesUIState()
    count = 5
    state.handle_key(key(Key.PAGE_DOWN), count, free)
    assert state.selected_index == count - 1
    state.handle_key(key(Key.PAGE_UP), count, free)
    assert state.selected_index == 0
    assert state.scroll_offset == 0


def test_processes_page_down_full_step(free):
    state = ProcessesUIState()
    state.handle_key(key(Key.PAGE_DOWN), 100, free)
    assert state.selected_index == PAGE_STEP


def test_processes_sort_key_toggles_direction(free):
    state = ProcessesUIState()
    state.handle_key(char("n"), 0, free)
    assert state.sort_column is ProcessSortColumn.NAME
    assert state.sort_ascending is True
    state.handle_key(char("n"), 0, free)
    assert state.sort_ascending is False


def test_processes_repeat_key_consumed_but_ignored(free):
    state = ProcessesUIState()
    assert state.handle_key(char("u", KeyKind.REPEAT), 0, free) is True
    assert state.sort_column is ProcessSortColumn.CPU


def test_processes_unrelated_keys_not_consumed(free):
    state = ProcessesUIState()
    assert state.handle_key(char("z"), 0, free) is False
    assert state.handle_key(key(Key.LEFT), 0, free) is False
    assert state.handle_key(char("/"), 0, free) is True


def test_processes_nav_throttled():
    clock = FixedClock()
    throttles = InputThrottles(clock)
    state = ProcessesUIState()
    state.handle_key(key(Key.DOWN), 10, throttles)
    state.handle_key(key(Key.DOWN), 10, throttles)
    assert state.selected_index == 1
    clock.now += 1.0
    state.handle_key(key(Key.DOWN), 10, throttles)
    assert state.selected_index == 2


def test_gpu_toggle_sort():
    state = GpuUIState()
    assert state.sort_column is GpuProcessSortColumn.GPU
    state.toggle_sort(GpuProcessSortColumn.GPU)
    assert state.sort_ascending is True
    state.toggle_sort(GpuProcessSortColumn.GPU)
    assert state.sort_ascending is False
    state.toggle_sort(GpuProcessSortColumn.NAME)
    assert state.sort_column is GpuProcessSortColumn.NAME
    assert state.sort_ascending is True


def test_gpu_keys(free):
    state = GpuUIState()
    assert state.handle_key(char("t"), 0, free) is True
    assert state.sort_column is GpuProcessSortColumn.TYPE
    count = 4
    state.handle_key(key(Key.PAGE_DOWN), count, free)
    assert state.selected_index == count - 1
    state.handle_key(key(Key.PAGE_UP), count, free)
    assert state.selected_index == 0
    state.handle_key(key(Key.PAGE_DOWN), 0, free)
    assert state.selected_index == 0
    assert state.handle_key(char("x"), 0, free) is False


def test_ram_focus_toggle_and_navigation(free):
    state = RamUIState()
    assert state.focused_panel is RamPanelFocus.TOP_PROCESSES
    state.handle_key(key(Key.RIGHT), 5, free)
    assert state.focused_panel is RamPanelFocus.BREAKDOWN
    assert state.handle_key(key(Key.DOWN), 5, free) is True
    assert state.selected_index == 0
    state.handle_key(key(Key.LEFT), 5, free)
    assert state.focused_panel is RamPanelFocus.TOP_PROCESSES
    state.handle_key(key(Key.DOWN), 5, free)
    assert state.selected_index == 1


def test_ram_sort_keys(free):
    state = RamUIState()
    state.handle_key(char("b"), 0, free)
    assert state.sort_column is RamProcessSortColumn.PRIVATE_BYTES
    assert state.sort_ascending is True
    state.handle_key(char("w"), 0, free)
    assert state.sort_column is RamProcessSortColumn.WORKING_SET
    assert state.sort_ascending is False


def test_services_defaults_and_filter_cycle(free):
    state = ServicesUIState()
    assert state.sort_column is ServiceSortColumn.NAME
    assert state.sort_ascending is True
    seen = []
    for _ in range(3):
        state.handle_key(char("f"), 0, free, compact=False)
        seen.append(state.status_filter)
    assert seen == [
        ServiceStatusFilter.RUNNING,
        ServiceStatusFilter.STOPPED,
        ServiceStatusFilter.ALL,
    ]


def test_services_compact_keeps_table_focus(free):
    state = ServicesUIState()
    state.handle_key(key(Key.RIGHT), 0, free, compact=True)
    assert state.focused_panel is ServicesPanelFocus.TABLE


def test_services_details_scroll_and_reset(free):
    state = ServicesUIState()
    state.handle_key(key(Key.RIGHT), 5, free, compact=False)
    assert state.focused_panel is ServicesPanelFocus.DETAILS
    state.handle_key(key(Key.PAGE_DOWN), 5, free, compact=False)
    state.handle_key(key(Key.DOWN), 5, free, compact=False)
    assert state.details_scroll == PAGE_STEP + 1
    assert state.selected_index == 0
    state.handle_key(key(Key.PAGE_UP), 5, free, compact=False)
    state.handle_key(key(Key.PAGE_UP), 5, free, compact=False)
    assert state.details_scroll == 0
    state.handle_key(key(Key.DOWN), 5, free, compact=False)
    state.handle_key(key(Key.LEFT), 5, free, compact=False)
    assert state.focused_panel is ServicesPanelFocus.TABLE
    assert state.details_scroll == 0


def test_services_sort_ignored_in_details(free):
    state = ServicesUIState(focused_panel=ServicesPanelFocus.DETAILS)
    assert state.handle_key(char("s"), 0, free, compact=False) is True
    assert state.sort_column is ServiceSortColumn.NAME
    state.focused_panel = ServicesPanelFocus.TABLE
    state.handle_key(char("s"), 0, free, compact=False)
    assert state.sort_column is ServiceSortColumn.STATUS
    assert state.sort_ascending is False


def test_services_enter_compact():
    state = ServicesUIState(focused_panel=ServicesPanelFocus.DETAILS, details_scroll=7)
    state.enter_compact()
    assert state.focused_panel is ServicesPanelFocus.TABLE
    assert state.details_scroll == 0


def test_services_table_navigation(free):
    state = ServicesUIState()
    count = 3
    state.handle_key(key(Key.PAGE_DOWN), count, free, compact=False)
    assert state.selected_index == count - 1
    state.scroll_offset = count - 1
    state.handle_key(key(Key.UP), count, free, compact=False)
    assert state.scroll_offset == state.selected_index == count - 2