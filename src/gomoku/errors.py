"""Errors reported back to the connection that triggered them."""

from __future__ import annotations

from typing import Dict


class GomokuError(Exception):
    kind = "error"

    def __init__(self, message: str, code: str = "error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def to_payload(self) -> Dict[str, str]:
        return {"message": self.message, "code": self.code, "kind": self.kind}


class ValidationError(GomokuError):
    """Malformed input: empty names or messages, bad or taken coordinates."""

    kind = "validation"


class StateError(GomokuError):
    """The request does not fit the current room or session state."""

    kind = "state"
