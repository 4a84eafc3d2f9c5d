import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from agents import WebSearchTool

from rebar_agentic.agents.signal_detector_agent import SIGNAL_DETECTOR_SYSTEM_PROMPT, create_signal_detector_agent
from rebar_agentic.config.settings import get_settings


def _ensure_openai_env() -> None:
    # Use a dummy key so Settings() can initialize without hitting the API.
    os.environ.setdefault("OPENAI_API_KEY", "sk-test-placeholder")


def test_signal_detector_agent_initializes() -> None:
    _ensure_openai_env()
    agent = create_signal_detector_agent()
    assert agent.name == "Signal Detector Agent"
    assert agent.model == get_settings().default_model
    assert agent.instructions == SIGNAL_DETECTOR_SYSTEM_PROMPT
    assert any(isinstance(tool, WebSearchTool) for tool in agent.tools)


def test_signal_detector_agent_reasoning_effort() -> None:
    _ensure_openai_env()
    agent = create_signal_detector_agent(name="Funding Detector", reasoning_effort="low")
    assert agent.name == "Funding Detector"
    assert agent.model_settings.reasoning.effort == "low"
