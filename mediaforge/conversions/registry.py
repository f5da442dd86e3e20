from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .models import ConversionDefinition, ConversionSet


class ConversionModel(BaseModel):
    """Schema for a conversion definition declared in a JSON file."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    manipulations: List[Dict[str, Any]] = Field(default_factory=list)
    queued: bool = True
    collections: List[str] = Field(default_factory=list)

    def to_definition(self) -> ConversionDefinition:
        return ConversionDefinition(
            name=self.name,
            manipulations=tuple(self.manipulations),
            queued=self.queued,
            collections=tuple(self.collections),
        )


_ConversionList = TypeAdapter(List[ConversionModel])


class ConversionRegistry:
    """Ordered store of declared conversions."""

    def __init__(self, definitions: Iterable[ConversionDefinition] = ()):
        self._definitions: dict[str, ConversionDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: ConversionDefinition) -> ConversionDefinition:
        if definition.name in self._definitions:
            raise ValueError(f"conversion already registered: {definition.name}")
        self._definitions[definition.name] = definition
        return definition

    def get(self, name: str) -> ConversionDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise LookupError(name) from None

    def conversion_set_for(self, collection_name: str) -> ConversionSet:
        return ConversionSet.partition(d for d in self._definitions.values() if d.applies_to(collection_name))

    def load_file(self, path: Path) -> list[ConversionDefinition]:
        """Register every definition from a JSON list, preserving file order.

        Args:
            path: The JSON file to read.

        Returns:
            The definitions that were registered.
        """
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        models = _ConversionList.validate_python(payload)
        return [self.register(model.to_definition()) for model in models]

    def __iter__(self) -> Iterator[ConversionDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)


__all__ = ["ConversionModel", "ConversionRegistry"]
