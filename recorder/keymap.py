"""Key name resolution for captured key presses.

Kept free of any input-library import so it can run inside a hook callback
(dictionary lookups only) and be tested without a display.
"""

from dataclasses import dataclass, field


# Special keys, keyed by the listener's key name
KEY_NAMES: dict[str, str] = {
    "backspace": "Backspace",
    "tab": "Tab",
    "enter": "Enter",
    "esc": "Esc",
    "space": "Space",
    "page_up": "PageUp",
    "page_down": "PageDown",
    "end": "End",
    "home": "Home",
    "left": "Left",
    "up": "Up",
    "right": "Right",
    "down": "Down",
    "insert": "Insert",
    "delete": "Delete",
    "caps_lock": "CapsLock",
    "print_screen": "PrintScreen",
    "menu": "Menu",
}

_MODIFIER_FLAGS: dict[str, str] = {
    "shift": "shift",
    "shift_l": "shift",
    "shift_r": "shift",
    "ctrl": "ctrl",
    "ctrl_l": "ctrl",
    "ctrl_r": "ctrl",
    "alt": "alt",
    "alt_l": "alt",
    "alt_r": "alt",
    "alt_gr": "alt",
}

# Command/Windows keys are modifiers but have no flag of their own
_FLAGLESS_MODIFIERS = {"cmd", "cmd_l", "cmd_r"}

_MODIFIER_DISPLAY = {"shift": "Shift", "ctrl": "Ctrl", "alt": "Alt"}


@dataclass(frozen=True)
class KeyPress:
    """A normalized key-down as handed from the platform listener to capture."""

    virtual_key_code: int
    key: str
    text: str | None
    ctrl: bool = False
    alt: bool = False
    shift: bool = False
    is_modifier: bool = False


def is_modifier(name: str) -> bool:
    return name in _MODIFIER_FLAGS or name in _FLAGLESS_MODIFIERS


def display_name(name: str) -> str:
    """Display name for a special key ("page_up" -> "PageUp", "f5" -> "F5")."""
    if name in KEY_NAMES:
        return KEY_NAMES[name]
    flag = _MODIFIER_FLAGS.get(name)
    if flag:
        return _MODIFIER_DISPLAY[flag]
    if name in _FLAGLESS_MODIFIERS:
        return "Cmd"
    if len(name) <= 3 and name.startswith("f") and name[1:].isdigit():
        return name.upper()
    return name.replace("_", " ").title().replace(" ", "")


def resolve_text(char: str | None, ctrl: bool, alt: bool) -> str | None:
    """Printable text for a key press, or None when it is not typing."""
    if ctrl or alt or not char:
        return None
    if len(char) != 1 or not char.isprintable():
        return None
    return char


@dataclass
class ModifierState:
    """Which of Ctrl/Alt/Shift are currently held.

    Updated from both press and release callbacks; only presses are recorded.
    """

    held: set[str] = field(default_factory=set)

    def update(self, name: str, pressed: bool) -> None:
        flag = _MODIFIER_FLAGS.get(name)
        if flag is None:
            return
        if pressed:
            self.held.add(flag)
        else:
            self.held.discard(flag)

    @property
    def ctrl(self) -> bool:
        return "ctrl" in self.held

    @property
    def alt(self) -> bool:
        return "alt" in self.held

    @property
    def shift(self) -> bool:
        return "shift" in self.held

    def special_key(self, name: str, vk: int) -> KeyPress:
        """Build a KeyPress for a named (non-character) key."""
        text = resolve_text(" ", self.ctrl, self.alt) if name == "space" else None
        return KeyPress(
            virtual_key_code=vk,
            key=display_name(name),
            text=text,
            ctrl=self.ctrl,
            alt=self.alt,
            shift=self.shift,
            is_modifier=is_modifier(name),
        )

    def char_key(self, char: str | None, vk: int) -> KeyPress:
        """Build a KeyPress for a character key."""
        key = char.upper() if char else f"Key{vk}"
        if not vk and char:
            vk = ord(key[0])
        return KeyPress(
            virtual_key_code=vk,
            key=key,
            text=resolve_text(char, self.ctrl, self.alt),
            ctrl=self.ctrl,
            alt=self.alt,
            shift=self.shift,
            is_modifier=False,
        )
