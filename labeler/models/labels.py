from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from labeler.models.features import FeatureCategory


class LabelType(str, Enum):
    REGION = "region"


class LabelValue(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    page: int
    text: str = ""
    bounding_boxes: List[List[float]] = Field(default_factory=list, alias="boundingBoxes")


class Label(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    label: str  # encoded path: fieldKey[/rowOrColKey/cellKey]
    value: List[LabelValue] = Field(default_factory=list)
    label_type: Optional[LabelType] = Field(None, alias="labelType")


class LabelsFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    schema_url: Optional[str] = Field(None, alias="$schema")
    document: str
    labels: List[Label] = Field(default_factory=list)


class LabelValueCandidate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bounding_boxes: List[List[float]] = Field(alias="boundingBoxes")
    page: int
    text: str = ""
    category: FeatureCategory = FeatureCategory.TEXT
    already_assigned_label_name: Optional[str] = Field(None, alias="alreadyAssignedLabelName")
