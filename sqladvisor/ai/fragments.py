"""
Recommendation fragments and the wire-level stream record.

A recommendation arrives as a sequence of fragments: any number of TEXT
fragments, closed by exactly one terminal fragment (DONE, a terminal
ERROR, or CANCELED).
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class FragmentKind(Enum):
    """Fragment types"""
    TEXT = "text"
    ERROR = "error"
    DONE = "done"
    CANCELED = "canceled"


@dataclass(frozen=True)
class RecommendationFragment:
    """One unit of recommendation output"""
    kind: FragmentKind
    content: str = ""
    terminal: bool = False

    @classmethod
    def text(cls, content: str) -> 'RecommendationFragment':
        return cls(FragmentKind.TEXT, content, terminal=False)

    @classmethod
    def error(cls, message: str, terminal: bool = True) -> 'RecommendationFragment':
        return cls(FragmentKind.ERROR, message, terminal=terminal)

    @classmethod
    def done(cls) -> 'RecommendationFragment':
        return cls(FragmentKind.DONE, terminal=True)

    @classmethod
    def canceled(cls) -> 'RecommendationFragment':
        return cls(FragmentKind.CANCELED, terminal=True)

    @property
    def is_text(self) -> bool:
        return self.kind is FragmentKind.TEXT

    @property
    def is_error(self) -> bool:
        return self.kind is FragmentKind.ERROR

    def __repr__(self) -> str:
        if self.kind is FragmentKind.TEXT:
            return f"Text({self.content!r})"
        if self.kind is FragmentKind.ERROR:
            return f"Error({self.content!r}, terminal={self.terminal})"
        return self.kind.name.capitalize()


@dataclass(frozen=True)
class StreamLine:
    """Decoded newline-delimited JSON record from the generation server"""
    response_text: str = ""
    done: bool = False
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'StreamLine':
        text = data.get("response")
        error = data.get("error")
        return cls(
            response_text=text if isinstance(text, str) else "",
            done=data.get("done") is True,
            error=str(error) if error else None,
        )

    @classmethod
    def parse(cls, raw: str) -> Optional['StreamLine']:
        """
        Parse one line of the response body.

        Returns None for blank lines, malformed JSON and non-object values;
        callers skip those.
        """
        if not raw or not raw.strip():
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None
        return cls.from_dict(data)
