"""Route tags such as "crimpy" or "dyno"."""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar

from tower_dal.entities.base import DocumentModel, LazyEntity


class TagDocument(DocumentModel):
    name: str
    description: str = ""


@dataclass
class TagState:
    name: str
    description: str


class Tag(LazyEntity[TagState]):
    collection: ClassVar[str] = "tags"

    def _decode(self, data: Mapping[str, Any]) -> TagState:
        doc = TagDocument.model_validate(data)
        return TagState(name=doc.name, description=doc.description)

    async def get_name(self) -> str:
        return (await self._loaded()).name

    async def get_description(self) -> str:
        return (await self._loaded()).description
