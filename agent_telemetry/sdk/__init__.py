"""
SDK for Agent Telemetry.

Client wrappers that record run telemetry as agents call their models.
"""

from .openai_client import InstrumentedOpenAI

__all__ = ["InstrumentedOpenAI"]
