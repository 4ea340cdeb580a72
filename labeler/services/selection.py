from typing import Any, List, Sequence

from pydantic import BaseModel, Field

from labeler.models.features import Feature, FeatureCategory
from labeler.models.labels import LabelValueCandidate
from labeler.models.schema import FieldType, PrimitiveField
from labeler.utils.labels import enabled_field_types

# offered when the search text matches no existing field
CREATE_FIELD_TYPES = (FieldType.STRING, FieldType.SELECTION_MARK, FieldType.SIGNATURE)


class SelectionSet:
    """Ordered set of selected features. Membership is by object identity."""

    def __init__(self):
        self._features: List[Feature] = []

    def __len__(self) -> int:
        return len(self._features)

    def __iter__(self):
        return iter(list(self._features))

    @property
    def features(self) -> List[Feature]:
        return list(self._features)

    def contains(self, feature: Feature) -> bool:
        return any(f is feature for f in self._features)

    def add(self, feature: Feature) -> None:
        if not self.contains(feature):
            self._features.append(feature)
            feature.selected = True

    def remove(self, feature: Feature) -> None:
        if self.contains(feature):
            self._features = [f for f in self._features if f is not feature]
            feature.selected = False

    def toggle(self, feature: Feature) -> bool:
        """Returns True when the feature ends up selected."""
        if self.contains(feature):
            self.remove(feature)
            return False
        self.add(feature)
        return True

    def clear(self) -> None:
        for feature in self._features:
            feature.selected = False
        self._features = []

    def categories(self) -> List[FeatureCategory]:
        return [f.category for f in self._features]

    def candidates(self) -> List[LabelValueCandidate]:
        return [
            LabelValueCandidate(
                bounding_boxes=[list(f.bounding_box)],
                page=f.page,
                text=f.text,
                category=f.category,
                already_assigned_label_name=f.assigned_label,
            )
            for f in self._features
        ]

    def enabled_field_types(self) -> List[FieldType]:
        return enabled_field_types(self.categories())


class InlineMenu(BaseModel):
    fields: List[Any] = Field(default_factory=list)
    create_types: List[FieldType] = Field(default_factory=list)


def inline_menu_items(fields: Sequence[Any], enabled_types: Sequence[FieldType], search_text: str = "") -> InlineMenu:
    """Fields the inline menu lists for the current selection, or create-field suggestions."""
    text = search_text.strip().lower()
    matches = [
        f for f in fields
        if isinstance(f, PrimitiveField) and f.field_type in enabled_types and text in f.field_key.lower()
    ]
    if matches or not text:
        return InlineMenu(fields=matches)
    return InlineMenu(create_types=[t for t in CREATE_FIELD_TYPES if t in enabled_types])
