from __future__ import annotations

from typing import Dict, List, Optional

from .models import AgentProfile

VOICES = ["Puck", "Charon", "Kore", "Fenrir", "Zephyr"]

DESKTOP_SUFFIX = "You are part of the Dayugame Desktop environment. You can control the UI via tools."

FALLBACK_INSTRUCTION = (
    "You are Dayugame, a desktop assistant. You can control this app. "
    "Use the `change_view` tool when the user wants to switch to Chat, Vision Studio, or Veo Director. "
    "Use `system_action` for new chats or UI toggles. Be concise."
)

DEFAULT_AGENTS: List[AgentProfile] = [
    AgentProfile(
        id="default",
        name="Dayugame",
        description="Your helpful desktop assistant.",
        system_instruction=(
            "You are Dayugame, a helpful, clever, and efficient desktop assistant. "
            "You help the user with tasks, analysis, and creativity."
        ),
        voice_name="Kore",
        icon="fa-bolt",
    ),
    AgentProfile(
        id="coder",
        name="DevBot",
        description="Expert software engineer and troubleshooter.",
        system_instruction=(
            "You are an expert software engineer. You write clean, efficient, and well-documented code. "
            "You prefer TypeScript and Python. You are concise and technical."
        ),
        voice_name="Fenrir",
        icon="fa-code",
    ),
    AgentProfile(
        id="creative",
        name="Muse",
        description="Creative writer and storyteller.",
        system_instruction=(
            "You are Muse, a creative writing partner. You excel at storytelling, poetry, and "
            "brainstorming imaginative concepts. Your tone is inspiring and evocative."
        ),
        voice_name="Puck",
        icon="fa-feather",
    ),
    AgentProfile(
        id="teacher",
        name="Mentor",
        description="Patient tutor for complex topics.",
        system_instruction=(
            "You are a patient and knowledgeable tutor. You explain complex topics simply and use analogies. "
            "You encourage the user to ask questions."
        ),
        voice_name="Zephyr",
        icon="fa-graduation-cap",
    ),
]


def live_instructions(agent: Optional[AgentProfile]) -> str:
    if agent is not None and agent.system_instruction:
        return f"{agent.system_instruction}\n{DESKTOP_SUFFIX}"
    return FALLBACK_INSTRUCTION


def voice_for(agent: Optional[AgentProfile]) -> str:
    if agent is None or agent.voice_name not in VOICES:
        return "Kore"
    return agent.voice_name


class AgentRoster:
    """In-memory lookup of agent snapshots by id."""

    def __init__(self, agents: Optional[List[AgentProfile]] = None):
        self._agents: Dict[str, AgentProfile] = {a.id: a for a in (agents or DEFAULT_AGENTS)}

    def get(self, agent_id: str) -> AgentProfile:
        try:
            return self._agents[agent_id]
        except KeyError:
            raise KeyError(f"Unknown agent: {agent_id}. Available: {', '.join(self._agents)}") from None

    def put(self, agent: AgentProfile) -> None:
        self._agents[agent.id] = agent

    def all(self) -> List[AgentProfile]:
        return list(self._agents.values())
