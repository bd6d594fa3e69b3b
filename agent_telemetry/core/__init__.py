"""
Core modules for Agent Telemetry.

This package contains the pure building blocks used by the metrics layer:
period resolution, numeric helpers, token usage and model pricing.
"""
