"""Core package for the Rebar sales-intelligence backend.

This package houses the research chat service, signal detection agents
(OpenAI Agents SDK), Supabase-backed stores, bulk research workers and
the HTTP API that the web client talks to.
"""

__all__ = [
    "__version__",
]

__version__ = "0.1.0"
