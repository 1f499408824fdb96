"""Error hierarchy for the resolution pipeline.

Every error carries a stable ``kind`` so handlers and log lines can branch on
it without inspecting messages.
"""

from __future__ import annotations


class DupeFinderError(Exception):
    kind = "internal"

    def __init__(self, message: str, *, context: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value!r}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class IdentificationError(DupeFinderError):
    """The input could not be resolved to a named, branded product."""

    kind = "identification"


class EnrichmentError(DupeFinderError):
    """A collaborator call that enriches an entity failed."""

    kind = "enrichment"


class LLMResponseError(EnrichmentError):
    """An LLM answered, but the answer could not be parsed or repaired."""

    kind = "llm_response"


class ImagePipelineError(DupeFinderError):
    kind = "image"


class PersistenceError(DupeFinderError):
    kind = "persistence"
