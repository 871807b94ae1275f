"""Front matter validation against a site's declared schema.

A ``schema:`` block in kiln.yaml maps field names to a type name, or to a
mapping with ``type`` and ``required``::

    schema:
      tags: list
      rating: {type: int, required: true}

Independently of the schema, every item must carry a title or a date.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .content import FrontMatter

TYPES: dict[str, tuple[type, ...]] = {
    "str": (str,),
    "int": (int,),
    "float": (int, float),
    "bool": (bool,),
    "date": (date, datetime),
    "list": (list, tuple),
    "dict": (dict,),
}


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: str = "str"
    required: bool = False

    @classmethod
    def from_config(cls, name: str, spec: Any) -> FieldSpec:
        if isinstance(spec, str):
            spec = {"type": spec}
        if not isinstance(spec, dict):
            raise ConfigurationError(f"invalid schema entry for '{name}': {spec!r}")
        type_name = str(spec.get("type", "str"))
        if type_name not in TYPES:
            raise ConfigurationError(
                f"unknown type '{type_name}' for schema field '{name}'"
            )
        return cls(name=str(name), type=type_name, required=bool(spec.get("required", False)))

    def check(self, value: Any) -> str | None:
        if value is None or value == [] or value == ():
            return f"missing required field '{self.name}'" if self.required else None
        # bool is an int subclass; keep them apart
        if self.type in ("int", "float") and isinstance(value, bool):
            return f"field '{self.name}' must be {self.type}"
        if not isinstance(value, TYPES[self.type]):
            return f"field '{self.name}' must be {self.type}, got {type(value).__name__}"
        return None


class SchemaValidator:
    """Validates resolved front matter against a list of field specs."""

    def __init__(self, fields: tuple[FieldSpec, ...] | list[FieldSpec] = ()):
        self.fields = tuple(fields)

    def validate(self, front_matter: FrontMatter) -> list[str]:
        """Return every validation error; an empty list means valid."""
        errors: list[str] = []
        if not front_matter.title and front_matter.date is None:
            errors.append("either 'title' or 'date' is required")
        data = front_matter.as_dict()
        for spec in self.fields:
            error = spec.check(data.get(spec.name))
            if error:
                errors.append(error)
        return errors
