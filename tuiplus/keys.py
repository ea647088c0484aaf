"""Keyboard events and input-rate throttling."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import Callable

Clock = Callable[[], float]


class Key(enum.Enum):
    CHAR = "char"
    ENTER = "enter"
    ESC = "esc"
    BACKSPACE = "backspace"
    TAB = "tab"
    BACK_TAB = "back_tab"
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    PAGE_UP = "page_up"
    PAGE_DOWN = "page_down"
    F1 = "f1"
    F2 = "f2"
    F3 = "f3"
    F4 = "f4"
    F5 = "f5"
    F6 = "f6"
    F7 = "f7"
    F8 = "f8"
    F9 = "f9"
    F10 = "f10"
    F11 = "f11"
    F12 = "f12"


class KeyKind(enum.Enum):
    PRESS = "press"
    REPEAT = "repeat"
    RELEASE = "release"


@dataclass(frozen=True)
class KeyEvent:
    """One key event; ``char`` holds the character when ``key`` is ``Key.CHAR``."""

    key: Key
    char: str | None = None
    kind: KeyKind = KeyKind.PRESS
    ctrl: bool = False

    def __post_init__(self) -> None:
        if self.key is Key.CHAR:
            if self.char is None or len(self.char) != 1:
                raise ValueError("a character key needs exactly one character")
        elif self.char is not None:
            raise ValueError(f"{self.key.name} carries no character")

    @classmethod
    def of_char(cls, c: str, kind: KeyKind = KeyKind.PRESS, ctrl: bool = False) -> KeyEvent:
        """Build a character key event."""
        return cls(Key.CHAR, c, kind, ctrl)

    def is_char(self, c: str) -> bool:
        """True if this is the character ``c``."""
        return self.key is Key.CHAR and self.char == c

    def is_initial_press(self) -> bool:
        """True for the first press, not for auto-repeat or release."""
        return self.kind is KeyKind.PRESS


class Throttle:
    """Lets an action through at most once per ``min_delay`` seconds."""

    def __init__(self, min_delay: float, clock: Clock | None = None) -> None:
        self.min_delay = min_delay
        self._clock = clock or time.monotonic
        self._last: float | None = None

    def allow(self) -> bool:
        """Return True and record the time if enough time has passed since the last allowed call."""
        now = self._clock()
        if self._last is not None and now - self._last < self.min_delay:
            return False
        self._last = now
        return True


class InputThrottles:
    """The throttles shared by the interface's key handlers."""

    def __init__(self, clock: Clock | None = None) -> None:
        self.nav = Throttle(0.120, clock)
        self.horizontal_nav = Throttle(0.180, clock)
        self.sort = Throttle(0.200, clock)
        self.widget_scroll = Throttle(0.150, clock)
        self.view_toggle = Throttle(0.200, clock)
        self.text = Throttle(0.035, clock)