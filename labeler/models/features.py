from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from labeler.utils.geometry import flatten

Point = Tuple[float, float]


class FeatureCategory(str, Enum):
    TEXT = "text"
    CHECKBOX = "checkbox"
    LABEL = "label"
    DRAWN_REGION = "region"


class Layer(str, Enum):
    """Role-tagged feature collections, in hit-test priority order."""

    LABEL = "label"
    CHECKBOX = "checkbox"
    TEXT = "text"
    POD = "pod"
    DRAWN_REGION = "drawn_region"
    DRAWN_REGION_LABEL = "drawn_region_label"


HIT_TEST_ORDER: Tuple[Layer, ...] = (
    Layer.LABEL,
    Layer.CHECKBOX,
    Layer.TEXT,
    Layer.POD,
    Layer.DRAWN_REGION,
    Layer.DRAWN_REGION_LABEL,
)

EDITABLE_LAYERS: Tuple[Layer, ...] = (Layer.DRAWN_REGION, Layer.DRAWN_REGION_LABEL)


class Feature(BaseModel):
    id: str
    category: FeatureCategory
    page: int
    text: str = ""
    geometry: List[Point]            # surface (image pixel) vertices, y down
    bounding_box: List[float]        # normalized flat polygon [x1, y1, x2, y2, ...]
    assigned_label: Optional[str] = None
    color: Optional[str] = None
    selected: bool = False
    highlighted: bool = False
    is_ocr_proposal: bool = False

    def flat_coordinates(self) -> List[float]:
        return flatten(self.geometry)


class TextFeature(Feature):
    category: FeatureCategory = FeatureCategory.TEXT


class CheckboxFeature(Feature):
    category: FeatureCategory = FeatureCategory.CHECKBOX
    state: Optional[str] = None  # "selected" / "unselected" as reported by analysis


class LabelFeature(Feature):
    category: FeatureCategory = FeatureCategory.LABEL
    assigned_label: str = Field(...)


class DrawnRegionFeature(Feature):
    category: FeatureCategory = FeatureCategory.DRAWN_REGION


FEATURE_CLASSES = {
    FeatureCategory.TEXT: TextFeature,
    FeatureCategory.CHECKBOX: CheckboxFeature,
    FeatureCategory.LABEL: LabelFeature,
    FeatureCategory.DRAWN_REGION: DrawnRegionFeature,
}
