from __future__ import annotations


class LiveError(Exception):
    """Base class for live session failures."""


class DeviceAcquisitionError(LiveError):
    """Camera, microphone or display capture could not be opened."""

    def __init__(self, device: str, detail: str):
        super().__init__(f"{device}: {detail}")
        self.device = device
        self.detail = detail


class TransportError(LiveError):
    """The duplex connection was refused or dropped."""


class PlaybackDecodeError(LiveError):
    """A single response audio fragment could not be decoded."""


class ToolHandlerError(LiveError):
    """A local tool handler raised while serving a tool call."""

    def __init__(self, tool_name: str, cause: BaseException):
        super().__init__(f"{tool_name}: {cause!r}")
        self.tool_name = tool_name
        self.cause = cause


class SessionStateError(LiveError):
    """Operation not valid in the current lifecycle state."""
