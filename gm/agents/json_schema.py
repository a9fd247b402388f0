from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel


@dataclass(frozen=True, slots=True)
class JsonSchema:
    """Minimal JSON Schema wrapper for OpenAI-style structured outputs."""

    name: str
    schema: dict[str, Any]
    strict: bool = True

    @classmethod
    def for_model(cls, name: str, model: type[BaseModel]) -> "JsonSchema":
        # Pydantic schemas carry defaults/titles that strict mode rejects, so
        # these are sent non-strict and validated on our side instead.
        return cls(name=name, schema=model.model_json_schema(), strict=False)

    def as_response_format(self) -> dict[str, Any]:
        return {
            "type": "json_schema",
            "json_schema": {
                "name": self.name,
                "schema": self.schema,
                "strict": self.strict,
            },
        }
