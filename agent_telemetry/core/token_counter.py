"""
Token counting and usage tracking.

Normalizes the token counts reported by agent runs.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.
    
    Contains exact token counts as reported by the agent; no estimation.
    """
    input_tokens: int
    output_tokens: int
    cache_tokens: int = 0
    
    def __post_init__(self):
        """Validate token counts are not negative."""
        if self.input_tokens < 0:
            raise ValueError("input_tokens cannot be negative")
        if self.output_tokens < 0:
            raise ValueError("output_tokens cannot be negative")
        if self.cache_tokens < 0:
            raise ValueError("cache_tokens cannot be negative")
    
    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return self.input_tokens + self.output_tokens
