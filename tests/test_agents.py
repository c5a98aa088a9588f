import pytest

from omnilive.agents import DESKTOP_SUFFIX, FALLBACK_INSTRUCTION, AgentRoster, live_instructions, voice_for
from omnilive.models import AgentProfile


def test_roster_defaults():
    roster = AgentRoster()
    assert [a.id for a in roster.all()] == ["default", "coder", "creative", "teacher"]
    assert roster.get("coder").voice_name == "Fenrir"


def test_unknown_agent_lists_available():
    with pytest.raises(KeyError) as e:
        AgentRoster().get("pirate")
    assert "default" in str(e.value)


def test_live_instructions_append_desktop_suffix():
    agent = AgentProfile(id="a", name="A", system_instruction="Be kind.")
    assert live_instructions(agent) == f"Be kind.\n{DESKTOP_SUFFIX}"
    assert live_instructions(AgentProfile(id="b", name="B")) == FALLBACK_INSTRUCTION
    assert live_instructions(None) == FALLBACK_INSTRUCTION


def test_voice_falls_back_to_kore():
    assert voice_for(AgentProfile(id="a", name="A", voice_name="Charon")) == "Charon"
    assert voice_for(AgentProfile(id="a", name="A", voice_name="Robot")) == "Kore"
    assert voice_for(None) == "Kore"


def test_identity_is_the_agent_id():
    a = AgentProfile(id="x", name="One", voice_name="Puck")
    b = AgentProfile(id="x", name="Renamed", voice_name="Kore")
    assert a.identity_key == b.identity_key
