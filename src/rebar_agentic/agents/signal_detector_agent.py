"""Signal Detector Agent implemented with the OpenAI Agents SDK.

One agent per detector run: it web-searches for a single class of buying
signal (breach, leadership change, funding, hiring) about one company and
answers with a JSON array of dated, sourced events.
"""

from __future__ import annotations

from agents import Agent, WebSearchTool
from agents.model_settings import ModelSettings, Reasoning

from rebar_agentic.config.settings import get_settings


SIGNAL_DETECTOR_SYSTEM_PROMPT = (
    "You are the signal monitor for RebarHQ account tracking.\n"
    "Research recent, credible public sources with the web_search tool and\n"
    "report only real, verifiable events about the named company.\n\n"
    "Rules:\n"
    "- Every signal needs an HTTPS source URL you actually found.\n"
    "- Dates are YYYY-MM-DD. Skip events outside the requested window.\n"
    "- No prose, no markdown: answer with the JSON the user message asks for.\n"
    "- If nothing qualifies, answer with an empty JSON array: []\n"
)


def create_signal_detector_agent(name: str = "Signal Detector Agent", reasoning_effort: str = "medium") -> Agent:
    """Factory for the web-search signal detector."""

    return Agent(
        name=name,
        instructions=SIGNAL_DETECTOR_SYSTEM_PROMPT,
        tools=[WebSearchTool(search_context_size="medium")],
        model=get_settings().default_model,
        model_settings=ModelSettings(reasoning=Reasoning(effort=reasoning_effort)),
    )
