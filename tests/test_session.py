"""Tests for recording sessions and key press normalization."""

import json

from recorder.keymap import ModifierState, display_name, resolve_text
from recorder.session import ClickButton, ClickEvent, Session

from conftest import T0, at, shortcut, typed, window


def test_seal_keeps_first_end_time(session):
    session.seal(at(10))
    session.seal(at(20))

    assert session.end_time == at(10)
    assert session.duration.total_seconds() == 10


def test_sealed_session_drops_new_events(session):
    assert session.record_keystroke(typed("a", at(1)))
    session.seal(at(2))

    assert not session.record_keystroke(typed("b", at(3)))
    assert not session.record_click(ClickEvent((1, 1), ClickButton.LEFT, at(3)))
    assert not session.record_window_event(window("Other", at(3)))
    assert [k.text for k in session.keystrokes] == ["a"]
    assert session.clicks == []


def test_applications_are_distinct_in_first_seen_order(session):
    session.window_events.extend([
        window("Inbox", at(0), "outlook.exe"),
        window("Notes", at(1), "notepad.exe"),
        window("Draft", at(2), "outlook.exe"),
        window("Desktop", at(3), ""),
    ])

    assert session.applications() == ["outlook.exe", "notepad.exe"]


def test_frame_paths_sorted_by_name(session, make_frame):
    make_frame(session, 2, at(8))
    make_frame(session, 1, at(4))
    make_frame(session, 10, at(40))

    assert [p.name for p in session.frame_paths()] == [
        "frame_0001.png", "frame_0002.png", "frame_0010.png",
    ]


def test_save_and_load(session, tmp_path):
    session.clicks.append(ClickEvent((10, 20), ClickButton.RIGHT, at(1)))
    session.keystrokes.append(shortcut("C", at(2), ctrl=True))
    session.window_events.append(window("Notepad", at(0)))
    session.seal(at(5))

    path = session.save()
    loaded = Session.load(session.output_dir)

    assert path.name == "session.json"
    assert loaded.id == session.id
    assert loaded.start_time == T0
    assert loaded.end_time == at(5)
    assert loaded.clicks == session.clicks
    assert loaded.keystrokes == session.keystrokes
    assert loaded.window_events == session.window_events


def test_load_uses_the_folder_it_was_found_in(session, tmp_path):
    session.seal(at(1))
    session.save()
    moved = tmp_path / "moved"
    session.output_dir.rename(moved)

    loaded = Session.load(moved)

    assert loaded.output_dir == moved
    assert loaded.frames_dir == moved / "frames"
    assert json.loads((moved / "session.json").read_text())["id"] == session.id


def test_display_text():
    assert typed("h", at(0)).display_text() == "h"
    assert shortcut("C", at(0), ctrl=True).display_text() == "Ctrl+C"
    assert shortcut("Tab", at(0), alt=True, shift=True).display_text() == "Alt+Shift+Tab"
    assert shortcut("Ctrl", at(0), ctrl=True, is_modifier=True).display_text() == "Ctrl"
    assert shortcut("Enter", at(0)).display_text() == "Enter"


def test_is_shortcut():
    assert shortcut("C", at(0), ctrl=True).is_shortcut
    assert shortcut("Cmd", at(0), is_modifier=True).is_shortcut
    assert not typed("A", at(0)).is_shortcut
    assert not shortcut("Enter", at(0)).is_shortcut


# -- keymap -----------------------------------------------------------------


def test_display_names():
    assert display_name("page_up") == "PageUp"
    assert display_name("f5") == "F5"
    assert display_name("ctrl_l") == "Ctrl"
    assert display_name("cmd") == "Cmd"
    assert display_name("num_lock") == "NumLock"


def test_resolve_text_rejects_shortcuts_and_control_chars():
    assert resolve_text("a", ctrl=False, alt=False) == "a"
    assert resolve_text("a", ctrl=True, alt=False) is None
    assert resolve_text("\x03", ctrl=False, alt=False) is None
    assert resolve_text(None, ctrl=False, alt=False) is None


def test_modifier_state_tracks_press_and_release():
    state = ModifierState()

    state.update("ctrl_l", pressed=True)
    press = state.char_key("c", 67)
    state.update("ctrl_l", pressed=False)
    after = state.char_key("c", 67)

    assert press.ctrl and press.text is None and press.key == "C"
    assert not after.ctrl and after.text == "c"


def test_shift_keeps_typed_text():
    state = ModifierState()
    state.update("shift", pressed=True)

    press = state.char_key("A", 65)

    assert press.shift
    assert press.text == "A"


def test_special_keys():
    state = ModifierState()

    enter = state.special_key("enter", 13)
    space = state.special_key("space", 32)
    cmd = state.special_key("cmd", 91)

    assert enter.key == "Enter" and enter.text is None
    assert space.text == " "
    assert cmd.is_modifier and cmd.key == "Cmd"
    assert not (cmd.ctrl or cmd.alt or cmd.shift)


def test_char_key_without_vk_uses_character_code():
    press = ModifierState().char_key("q", 0)

    assert press.virtual_key_code == ord("Q")


def test_frame_paths_follow_frame_number_past_padding(session, make_frame):
    make_frame(session, 10000, at(8))
    make_frame(session, 9999, at(4))

    assert [p.name for p in session.frame_paths()] == ["frame_9999.png", "frame_10000.png"]
