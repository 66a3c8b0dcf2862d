from __future__ import annotations

from typing import List


class BuilderError(Exception):
    """Base class for builder failures surfaced to the presentation layer."""


class BuilderValidationError(BuilderError):
    def __init__(self, messages: List[str]) -> None:
        super().__init__("; ".join(messages))
        self.messages = list(messages)


class ExternalServiceError(BuilderError):
    """A catalog, AI generation or template store call failed."""

    def __init__(self, service: str, detail: str) -> None:
        super().__init__(f"{service}: {detail}")
        self.service = service
        self.detail = detail


class InvalidTransitionError(BuilderError):
    pass
