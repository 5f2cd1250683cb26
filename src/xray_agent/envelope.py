from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from detect.geometry import BoundingBox


class SubjectType(str, Enum):
    UNKNOWN = "unknown"
    HUMAN = "human"


class Point(BaseModel):
    x: int
    y: int


class Position(BaseModel):
    """
    One detection as the client draws it.

    pt1 is the top-right corner and pt2 the bottom-left corner of the box.
    """
    pt1: Point
    pt2: Point

    @classmethod
    def from_box(cls, box: BoundingBox) -> "Position":
        return cls(
            pt1=Point(x=box.right, y=box.top),
            pt2=Point(x=box.left, y=box.bottom),
        )


class PresignedPost(BaseModel):
    """Where and how the client may upload the full-resolution frame."""
    model_config = ConfigDict(populate_by_name=True)

    url: str
    form_data: Dict[str, str] = Field(default_factory=dict, alias="formData")


class ResponseEnvelope(BaseModel):
    """
    The single response sent back for every accepted message.

    positions, type, display and zoom are what the client acts on.
    sequence lets the client match a response to the message it sent.
    """
    sequence: int = Field(..., ge=1)
    positions: List[Position] = Field(default_factory=list)
    type: SubjectType = SubjectType.UNKNOWN
    display: bool = False
    zoom: int = Field(-1, ge=-1, le=3)
    upload: Optional[PresignedPost] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "sequence": 12,
                    "positions": [{"pt1": {"x": 420, "y": 180}, "pt2": {"x": 300, "y": 320}}],
                    "type": "human",
                    "display": True,
                    "zoom": 1,
                }
            ]
        }
    }

    @classmethod
    def degraded(cls, sequence: int) -> "ResponseEnvelope":
        """Conservative "nothing detected" answer used when analysis fails."""
        return cls(sequence=sequence)

    @classmethod
    def from_detections(
        cls,
        sequence: int,
        boxes: Sequence[BoundingBox],
        display: bool,
        zoom: int,
        upload: Optional[PresignedPost] = None,
    ) -> "ResponseEnvelope":
        return cls(
            sequence=sequence,
            positions=[Position.from_box(box) for box in boxes],
            type=SubjectType.HUMAN if boxes else SubjectType.UNKNOWN,
            display=display,
            zoom=zoom,
            upload=upload,
        )

    def to_json(self) -> str:
        """Wire format: optional fields are left out when unset."""
        return self.model_dump_json(by_alias=True, exclude_none=True)
