"""Project document: the persisted editing state."""

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

from avorch.models.edit import Segment, Transition
from avorch.models.media import MediaAsset


class ProjectDocument(BaseModel):
    """Segments, transitions and asset references of an edit.

    Serializes to JSON and loads back into identical structures.
    """

    version: int = Field(1, description="Document format version")
    name: str = Field("Untitled Project", description="Project name")
    assets: list[MediaAsset] = Field(default_factory=list)
    segments: list[Segment] = Field(default_factory=list)
    transitions: list[Transition] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_ids(self) -> "ProjectDocument":
        """Segment ids must be unique; asset references must resolve."""
        ids = [s.segment_id for s in self.segments]
        if len(ids) != len(set(ids)):
            raise ValueError("segment_id values must be unique")
        known = {a.id for a in self.assets}
        for segment in self.segments:
            if segment.asset_id is not None and segment.asset_id not in known:
                raise ValueError(
                    f"segment {segment.segment_id} references unknown asset {segment.asset_id}"
                )
        return self

    def get_asset(self, asset_id: str) -> MediaAsset | None:
        """Get an asset by ID."""
        for asset in self.assets:
            if asset.id == asset_id:
                return asset
        return None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectDocument":
        return cls.model_validate(data)

    def save(self, path: Path) -> Path:
        """Write the document as JSON.

        Args:
            path: Output path

        Returns:
            The path written
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)
        return path

    @classmethod
    def load(cls, path: Path) -> "ProjectDocument":
        """Load a document written by save()."""
        with open(path, encoding="utf-8") as f:
            return cls.from_dict(json.load(f))
