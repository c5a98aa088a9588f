import pytest

from omnilive.commands import (
    CMD_CHANGE_VIEW,
    CMD_SYSTEM_ACTION,
    DesktopCommands,
    DesktopState,
    View,
    resolve_action,
    resolve_view,
)


@pytest.mark.parametrize(
    "name,view",
    [
        ("chat", View.CHAT),
        ("Open the CHAT window", View.CHAT),
        ("vision studio", View.VISION),
        ("veo", View.VEO),
        ("Video Director", View.VEO),
        ("system bridge", View.SYSTEM),
        ("bridge", View.SYSTEM),
        ("library", None),
        ("", None),
    ],
)
def test_resolve_view_by_substring(name, view):
    assert resolve_view(name) == view


def test_first_matching_keyword_wins():
    # "chat" is checked before "video"
    assert resolve_view("video chat") == View.CHAT


def test_resolve_action():
    assert resolve_action("NEW_CHAT") == "new_chat"
    assert resolve_action("toggle_sidebar") == "toggle_sidebar"
    assert resolve_action("reboot") is None


def test_change_view_updates_state_and_notifies():
    desk = DesktopCommands()
    seen = []
    desk.subscribe(lambda cmd, args, state: seen.append((cmd, state.view)))

    assert desk.handle(CMD_CHANGE_VIEW, {"view": "vision"}) is True
    assert desk.state.view == View.VISION
    assert desk.handle(CMD_CHANGE_VIEW, {"view": "vision"}) is False
    assert seen == [(CMD_CHANGE_VIEW, View.VISION), (CMD_CHANGE_VIEW, View.VISION)]


def test_unmatched_view_changes_nothing():
    desk = DesktopCommands(DesktopState(view=View.VEO))
    assert desk.handle(CMD_CHANGE_VIEW, {"view": "spreadsheet"}) is False
    assert desk.state.view == View.VEO


def test_system_actions():
    desk = DesktopCommands()
    desk.system_action({"action": "new_chat"})
    desk.system_action({"action": "new_chat"})
    desk.system_action({"action": "toggle_sidebar"})
    assert desk.state.chat_session_id == 2
    assert desk.state.sidebar_collapsed is True
    assert desk.handle(CMD_SYSTEM_ACTION, {"action": "self_destruct"}) is False
    assert desk.state.to_dict() == {"view": "CHAT", "chat_session_id": 2, "sidebar_collapsed": True}


def test_unsubscribe():
    desk = DesktopCommands()
    seen = []
    off = desk.subscribe(lambda *a: seen.append(a))
    off()
    off()
    desk.change_view({"view": "veo"})
    assert seen == []
