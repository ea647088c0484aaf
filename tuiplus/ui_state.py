"""Selection, sorting and focus state for the process, GPU, RAM and service tables."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from .keys import InputThrottles, Key, KeyEvent

PAGE_STEP = 10


class ProcessSortColumn(enum.Enum):
    PID = "pid"
    NAME = "name"
    CPU = "cpu"
    MEMORY = "memory"
    THREADS = "threads"
    USER = "user"


class ServiceSortColumn(enum.Enum):
    NAME = "name"
    DISPLAY_NAME = "display_name"
    STATUS = "status"
    START_TYPE = "start_type"


class ServiceStatusFilter(enum.Enum):
    ALL = "all"
    RUNNING = "running"
    STOPPED = "stopped"

    def next(self) -> ServiceStatusFilter:
        """The filter that follows this one in the cycle All, Running, Stopped."""
        order = list(ServiceStatusFilter)
        return order[(order.index(self) + 1) % len(order)]


class GpuProcessSortColumn(enum.Enum):
    PID = "pid"
    NAME = "name"
    GPU = "gpu"
    MEMORY = "memory"
    TYPE = "type"


class RamPanelFocus(enum.Enum):
    BREAKDOWN = "breakdown"
    TOP_PROCESSES = "top_processes"


class RamProcessSortColumn(enum.Enum):
    PID = "pid"
    NAME = "name"
    WORKING_SET = "working_set"
    PRIVATE_BYTES = "private_bytes"


class ServicesPanelFocus(enum.Enum):
    TABLE = "table"
    DETAILS = "details"


_PROCESS_SORT_KEYS = {
    "p": ProcessSortColumn.PID,
    "n": ProcessSortColumn.NAME,
    "c": ProcessSortColumn.CPU,
    "m": ProcessSortColumn.MEMORY,
    "t": ProcessSortColumn.THREADS,
    "u": ProcessSortColumn.USER,
}

_GPU_SORT_KEYS = {
    "p": GpuProcessSortColumn.PID,
    "n": GpuProcessSortColumn.NAME,
    "g": GpuProcessSortColumn.GPU,
    "m": GpuProcessSortColumn.MEMORY,
    "t": GpuProcessSortColumn.TYPE,
}

_RAM_SORT_KEYS = {
    "p": RamProcessSortColumn.PID,
    "n": RamProcessSortColumn.NAME,
    "w": RamProcessSortColumn.WORKING_SET,
    "b": RamProcessSortColumn.PRIVATE_BYTES,
}

_SERVICE_SORT_KEYS = {
    "n": ServiceSortColumn.NAME,
    "d": ServiceSortColumn.DISPLAY_NAME,
    "s": ServiceSortColumn.STATUS,
    "t": ServiceSortColumn.START_TYPE,
}


def _sort_allowed(key: KeyEvent, throttles: InputThrottles) -> bool:
    # The throttle is only consulted for an initial press.
    return key.is_initial_press() and throttles.sort.allow()


@dataclass
class ProcessesUIState:
    """Selection and sort order of the process table."""

    selected_index: int = 0
    scroll_offset: int = 0
    sort_column: ProcessSortColumn = ProcessSortColumn.CPU
    sort_ascending: bool = False
    filter: str = ""

    def _select_up(self, step: int) -> None:
        self.selected_index = max(0, self.selected_index - step)

    def handle_key(self, key: KeyEvent, process_count: int, throttles: InputThrottles) -> bool:
        """Apply a key; return True if the key belongs to this table."""
        match key.key:
            case Key.UP:
                if throttles.nav.allow() and self.selected_index > 0:
                    self.selected_index -= 1
                    if self.selected_index < self.scroll_offset:
                        self.scroll_offset = self.selected_index
                return True
            case Key.DOWN:
                if throttles.nav.allow() and self.selected_index + 1 < process_count:
                    self.selected_index += 1
                return True
            case Key.PAGE_UP:
                if throttles.nav.allow():
                    self._select_up(PAGE_STEP)
                    self.scroll_offset = self.selected_index
                return True
            case Key.PAGE_DOWN:
                if throttles.nav.allow():
                    if self.selected_index + PAGE_STEP < process_count:
                        self.selected_index += PAGE_STEP
                    elif process_count > 0:
                        self.selected_index = process_count - 1
                return True
            case Key.CHAR:
                if key.char == "/":
                    return True
                column = _PROCESS_SORT_KEYS.get(key.char or "")
                if column is None:
                    return False
                if _sort_allowed(key, throttles):
                    self.sort_column = column
                    self.sort_ascending = not self.sort_ascending
                return True
        return False


@dataclass
class GpuUIState:
    """Selection and sort order of the GPU process table."""

    selected_index: int = 0
    sort_column: GpuProcessSortColumn = GpuProcessSortColumn.GPU
    sort_ascending: bool = False

    def toggle_sort(self, column: GpuProcessSortColumn) -> None:
        """Flip the direction for the current column, or switch to a new one ascending."""
        if self.sort_column == column:
            self.sort_ascending = not self.sort_ascending
        else:
            self.sort_column = column
            self.sort_ascending = True

    def handle_key(self, key: KeyEvent, process_count: int, throttles: InputThrottles) -> bool:
        """Apply a key; return True if the key belongs to this table."""
        match key.key:
            case Key.UP:
                if throttles.nav.allow() and self.selected_index > 0:
                    self.selected_index -= 1
                return True
            case Key.DOWN:
                if throttles.nav.allow() and self.selected_index + 1 < process_count:
                    self.selected_index += 1
                return True
            case Key.PAGE_UP:
                if throttles.nav.allow():
                    self.selected_index = max(0, self.selected_index - PAGE_STEP)
                return True
            case Key.PAGE_DOWN:
                if throttles.nav.allow() and process_count > 0:
                    self.selected_index = min(self.selected_index + PAGE_STEP, process_count - 1)
                return True
            case Key.CHAR:
                column = _GPU_SORT_KEYS.get(key.char or "")
                if column is None:
                    return False
                if _sort_allowed(key, throttles):
                    self.toggle_sort(column)
                return True
        return False


@dataclass
class RamUIState:
    """Focus, selection and sort order of the RAM view."""

    focused_panel: RamPanelFocus = RamPanelFocus.TOP_PROCESSES
    selected_index: int = 0
    sort_column: RamProcessSortColumn = RamProcessSortColumn.WORKING_SET
    sort_ascending: bool = False

    @property
    def _on_processes(self) -> bool:
        return self.focused_panel is RamPanelFocus.TOP_PROCESSES

    def handle_key(self, key: KeyEvent, process_count: int, throttles: InputThrottles) -> bool:
        """Apply a key; return True if the key belongs to this view."""
        match key.key:
            case Key.LEFT | Key.RIGHT:
                if throttles.nav.allow():
                    self.focused_panel = (
                        RamPanelFocus.BREAKDOWN
                        if self._on_processes
                        else RamPanelFocus.TOP_PROCESSES
                    )
                return True
            case Key.UP:
                if throttles.nav.allow() and self._on_processes and self.selected_index > 0:
                    self.selected_index -= 1
                return True
            case Key.DOWN:
                if (
                    throttles.nav.allow()
                    and self._on_processes
                    and self.selected_index + 1 < process_count
                ):
                    self.selected_index += 1
                return True
            case Key.PAGE_UP:
                if throttles.nav.allow() and self._on_processes:
                    self.selected_index = max(0, self.selected_index - PAGE_STEP)
                return True
            case Key.PAGE_DOWN:
                if throttles.nav.allow() and self._on_processes and process_count > 0:
                    self.selected_index = min(self.selected_index + PAGE_STEP, process_count - 1)
                return True
            case Key.CHAR:
                column = _RAM_SORT_KEYS.get(key.char or "")
                if column is None:
                    return False
                if _sort_allowed(key, throttles):
                    self.sort_column = column
                    self.sort_ascending = not self.sort_ascending
                return True
        return False


@dataclass
class ServicesUIState:
    """Selection, sort order, filter and focus of the services view."""

    selected_index: int = 0
    scroll_offset: int = 0
    sort_column: ServiceSortColumn = ServiceSortColumn.NAME
    sort_ascending: bool = True
    status_filter: ServiceStatusFilter = ServiceStatusFilter.ALL
    focused_panel: ServicesPanelFocus = ServicesPanelFocus.TABLE
    details_scroll: int = 0

    @property
    def _on_details(self) -> bool:
        return self.focused_panel is ServicesPanelFocus.DETAILS

    def enter_compact(self) -> None:
        """Compact mode hides the details panel: focus the table and reset its scroll."""
        self.focused_panel = ServicesPanelFocus.TABLE
        self.details_scroll = 0

    def _scroll_details(self, delta: int, throttles: InputThrottles) -> None:
        if throttles.widget_scroll.allow():
            self.details_scroll = max(0, self.details_scroll + delta)

    def handle_key(
        self,
        key: KeyEvent,
        service_count: int,
        throttles: InputThrottles,
        compact: bool,
    ) -> bool:
        """Apply a key; return True if the key belongs to this view."""
        match key.key:
            case Key.LEFT | Key.RIGHT:
                if throttles.nav.allow():
                    if compact:
                        self.focused_panel = ServicesPanelFocus.TABLE
                    else:
                        self.focused_panel = (
                            ServicesPanelFocus.TABLE
                            if self._on_details
                            else ServicesPanelFocus.DETAILS
                        )
                        if self.focused_panel is ServicesPanelFocus.TABLE:
                            self.details_scroll = 0
                return True
            case Key.UP:
                if self._on_details:
                    self._scroll_details(-1, throttles)
                elif throttles.nav.allow() and self.selected_index > 0:
                    self.selected_index -= 1
                    if self.selected_index < self.scroll_offset:
                        self.scroll_offset = self.selected_index
                return True
            case Key.DOWN:
                if self._on_details:
                    self._scroll_details(1, throttles)
                elif throttles.nav.allow() and self.selected_index + 1 < service_count:
                    self.selected_index += 1
                return True
            case Key.PAGE_UP:
                if self._on_details:
                    self._scroll_details(-PAGE_STEP, throttles)
                elif throttles.nav.allow():
                    self.selected_index = max(0, self.selected_index - PAGE_STEP)
                    self.scroll_offset = self.selected_index
                return True
            case Key.PAGE_DOWN:
                if self._on_details:
                    self._scroll_details(PAGE_STEP, throttles)
                elif throttles.nav.allow():
                    if self.selected_index + PAGE_STEP < service_count:
                        self.selected_index += PAGE_STEP
                    elif service_count > 0:
                        self.selected_index = service_count - 1
                return True
            case Key.CHAR:
                if key.char == "f":
                    self.status_filter = self.status_filter.next()
                    return True
                column = _SERVICE_SORT_KEYS.get(key.char or "")
                if column is None:
                    return False
                if not self._on_details and _sort_allowed(key, throttles):
                    self.sort_column = column
                    self.sort_ascending = not self.sort_ascending
                return True
        return False