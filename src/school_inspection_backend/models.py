from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .errors import FailureKind

UDISE_CODE_PATTERN = r"^[0-9]{6,}$"

# Scan order used when reading rooms[<index>][<surface>] form fields.
ROOM_SURFACES = (
    "interiorCeiling",
    "interiorFrontWall",
    "interiorRightWall",
    "interiorBackWall",
    "interiorLeftWall",
    "interiorFloor",
    "exteriorFrontWall",
    "exteriorRightWall",
    "exteriorLeftWall",
    "exteriorBackWall",
    "surroundingAreaOfBackwall",
    "surroundingAreaOfLeftwall",
    "surroundingAreaOfFrontwall",
    "surroundingAreaOfRightwall",
    "roof",
)

REQUIRED_SURFACES = frozenset(
    {
        "interiorCeiling",
        "interiorFrontWall",
        "interiorRightWall",
        "interiorBackWall",
        "interiorLeftWall",
        "interiorFloor",
        "roof",
    }
)

SURFACE_LABELS: Dict[str, str] = {
    "interiorFrontWall": "Interior Front Wall (भीतरी सामने की दीवार)",
    "interiorRightWall": "Interior Right Wall (भीतरी दायीं दीवार)",
    "interiorBackWall": "Interior Back Wall (भीतरी पिछली दीवार)",
    "interiorLeftWall": "Interior Left Wall (भीतरी बायीं दीवार)",
    "interiorCeiling": "Interior Ceiling (भीतरी छत)",
    "interiorFloor": "Interior Floor (भीतरी फ़र्श)",
    "exteriorBackWall": "Exterior Back Wall (बाहरी पिछली दीवार)",
    "exteriorLeftWall": "Exterior Left Wall (बाहरी बायीं दीवार)",
    "exteriorFrontWall": "Exterior Front Wall (बाहरी सामने की दीवार)",
    "exteriorRightWall": "Exterior Right Wall (बाहरी दायीं दीवार)",
    "surroundingAreaOfBackwall": "Surrounding Area of Backwall (पिछली दीवार की नींव के आसपास का क्षेत्र)",
    "surroundingAreaOfLeftwall": "Surrounding Area of Leftwall (बायीं दीवार की नींव के आसपास का क्षेत्र)",
    "surroundingAreaOfFrontwall": "Surrounding Area of Frontwall (सामने की दीवार की नींव के आसपास का क्षेत्र)",
    "surroundingAreaOfRightwall": "Surrounding Area of Rightwall (दायीं दीवार की नींव के आसपास का क्षेत्र)",
    "roof": "Roof (ऊपरी छत)",
}

Room = Dict[str, List[str]]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InspectionDocument(CamelModel):
    """Shape every inspection must have before it is stored."""

    school_name: str = Field(min_length=1)
    board_file: Optional[str] = None
    state: str = Field(min_length=1)
    district: str = Field(min_length=1)
    block: str = Field(min_length=1)
    udise_code: str = Field(pattern=UDISE_CODE_PATTERN)
    rooms: List[Room] = Field(default_factory=list)

    @field_validator("rooms")
    @classmethod
    def rooms_cover_every_surface(cls, rooms: List[Room]) -> List[Room]:
        expected = set(ROOM_SURFACES)
        for index, room in enumerate(rooms):
            missing = expected - room.keys()
            if missing:
                raise ValueError(f"room {index} is missing surfaces: {', '.join(sorted(missing))}")
            unknown = room.keys() - expected
            if unknown:
                raise ValueError(f"room {index} has unknown surfaces: {', '.join(sorted(unknown))}")
        return rooms


class InspectionRecord(InspectionDocument):
    id: str
    created_at: datetime
    updated_at: datetime


class UserRecord(CamelModel):
    id: str
    udise_code: str
    school_name: Optional[str] = None
    created_at: datetime


class SurfaceInfo(BaseModel):
    name: str
    label: str
    required: bool


class FormMetadata(CamelModel):
    surfaces: List[SurfaceInfo]
    udise_code_pattern: str
    max_file_bytes: int


def build_form_metadata(max_file_bytes: int) -> FormMetadata:
    return FormMetadata(
        surfaces=[
            SurfaceInfo(name=name, label=SURFACE_LABELS[name], required=name in REQUIRED_SURFACES)
            for name in ROOM_SURFACES
        ],
        udise_code_pattern=UDISE_CODE_PATTERN,
        max_file_bytes=max_file_bytes,
    )


class SubmissionResult(BaseModel):
    """Outcome of one submission: either a created record or a tagged failure."""

    success: bool
    status_code: int
    data: Optional[InspectionRecord] = None
    failure: Optional[FailureKind] = None
    error: Optional[str] = None

    @classmethod
    def created(cls, record: InspectionRecord) -> "SubmissionResult":
        return cls(success=True, status_code=201, data=record)

    @classmethod
    def failed(cls, kind: FailureKind, message: Optional[str] = None) -> "SubmissionResult":
        return cls(
            success=False,
            status_code=kind.status_code,
            failure=kind,
            error=message or kind.default_message,
        )

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            body["data"] = self.data.model_dump(mode="json", by_alias=True)
        if self.error is not None:
            body["error"] = self.error
        return body
