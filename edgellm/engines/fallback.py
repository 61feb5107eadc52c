"""Deterministic output when no real runtime is usable.

Always available. Not a :class:`ComputeRuntime` and never registered: the
inference engine switches to it on its own when loading a real runtime is
impossible. Output depends only on the prompt and the parameters, so tests
can compare it for equality.
"""

from __future__ import annotations

from ..models import GenerateParams


class FallbackGenerator:
    """Produces a fixed, prompt-echoing response split into word fragments."""

    name = "fallback"
    display_name = "fallback (simulated responses)"

    def fragments(self, prompt: str, params: GenerateParams) -> list[str]:
        """Return the response as an ordered list of fragments.

        ``max_tokens`` caps the number of fragments, but never cuts into
        the echoed prompt.
        """
        head = ["[Fallback Response] ", "This ", "is ", "a ", "simulated ", "response ", "to: "]
        echo = f"'{prompt}'"
        tail = [
            ". ",
            "Temperature: ",
            f"{params.temperature}, ",
            "Max ",
            "Tokens: ",
            f"{params.max_tokens}",
        ]
        parts = head + [echo] + tail
        limit = max(params.max_tokens, len(head) + 1)
        return parts[:limit]

    def text(self, prompt: str, params: GenerateParams) -> str:
        return "".join(self.fragments(prompt, params))
