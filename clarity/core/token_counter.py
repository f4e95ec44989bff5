"""
Token accounting for spans.

Holds prompt/completion counts as reported by the instrumented application.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported for a single model call.

    Counts are taken as reported; no estimation or tokenizer logic.
    """
    prompt_tokens: int
    completion_tokens: int

    @classmethod
    def clamped(cls, prompt_tokens: int, completion_tokens: int) -> "TokenUsage":
        """Build usage with negative counts treated as zero."""
        return cls(
            prompt_tokens=max(0, int(prompt_tokens or 0)),
            completion_tokens=max(0, int(completion_tokens or 0)),
        )

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens
