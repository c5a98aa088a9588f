from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .logging import RichLogger

CMD_CHANGE_VIEW = "change_view"
CMD_SYSTEM_ACTION = "system_action"


class View(str, Enum):
    CHAT = "CHAT"
    VISION = "VISION"
    VEO = "VEO"
    SYSTEM = "SYSTEM"
    LIBRARY = "LIBRARY"


# first match wins, checked in this order
_VIEW_KEYWORDS: List[tuple] = [
    (("chat",), View.CHAT),
    (("vision",), View.VISION),
    (("veo", "video"), View.VEO),
    (("system", "bridge"), View.SYSTEM),
]

ACTION_NEW_CHAT = "new_chat"
ACTION_TOGGLE_SIDEBAR = "toggle_sidebar"
KNOWN_ACTIONS = (ACTION_NEW_CHAT, ACTION_TOGGLE_SIDEBAR)


def resolve_view(name: str) -> Optional[View]:
    v = (name or "").lower()
    for keywords, view in _VIEW_KEYWORDS:
        if any(k in v for k in keywords):
            return view
    return None


def resolve_action(name: str) -> Optional[str]:
    a = (name or "").lower()
    return a if a in KNOWN_ACTIONS else None


@dataclass
class DesktopState:
    view: View = View.CHAT
    chat_session_id: int = 0
    sidebar_collapsed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "view": self.view.value,
            "chat_session_id": self.chat_session_id,
            "sidebar_collapsed": self.sidebar_collapsed,
        }


class DesktopCommands:
    """
    Receives (command, args) from the tool bridge and applies them to the
    desktop state. Unmatched views or actions change nothing.
    """

    def __init__(self, state: Optional[DesktopState] = None):
        self.state = state or DesktopState()
        self._listeners: List[Callable[[str, Dict[str, Any], DesktopState], None]] = []

    def subscribe(self, fn: Callable[[str, Dict[str, Any], DesktopState], None]) -> Callable[[], None]:
        self._listeners.append(fn)
        return lambda: self._listeners.remove(fn) if fn in self._listeners else None

    def handle(self, command: str, args: Dict[str, Any]) -> bool:
        print(RichLogger.line(RichLogger.ui_command(command, args)))
        changed = False

        if command == CMD_CHANGE_VIEW:
            view = resolve_view(str(args.get("view", "")))
            if view is not None:
                changed = view != self.state.view
                self.state.view = view
        elif command == CMD_SYSTEM_ACTION:
            action = resolve_action(str(args.get("action", "")))
            if action == ACTION_NEW_CHAT:
                self.state.chat_session_id += 1
                changed = True
            elif action == ACTION_TOGGLE_SIDEBAR:
                self.state.sidebar_collapsed = not self.state.sidebar_collapsed
                changed = True

        for fn in list(self._listeners):
            fn(command, args, self.state)
        return changed

    # Tool bridge handlers
    def change_view(self, args: Dict[str, Any]) -> None:
        self.handle(CMD_CHANGE_VIEW, args)

    def system_action(self, args: Dict[str, Any]) -> None:
        self.handle(CMD_SYSTEM_ACTION, args)
