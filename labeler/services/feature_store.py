import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from labeler.models.features import (
    EDITABLE_LAYERS,
    FEATURE_CLASSES,
    Feature,
    FeatureCategory,
    Layer,
)
from labeler.utils.geometry import (
    Extent,
    Point,
    extent,
    extents_intersect,
    flatten,
    polygon_contains,
    unflatten,
)
from labeler.utils.ids import region_id

logger = logging.getLogger(__name__)


# ---------------------------
# Feature construction
# ---------------------------

def _scale(points: Sequence[Point], sx: float, sy: float) -> List[Point]:
    return [(x * sx, y * sy) for x, y in points]


def create_feature_from_bounding_box(
    category: FeatureCategory,
    bounding_box: Sequence[float],
    page: int,
    image_width: float,
    image_height: float,
    text: str = "",
    **extra,
) -> Feature:
    """Feature from a normalized polygon, e.g. a saved label value."""
    bbox = [float(v) for v in bounding_box]
    geometry = _scale(unflatten(bbox), image_width, image_height)
    cls = FEATURE_CLASSES[category]
    return cls(
        id=region_id(bbox, page),
        category=category,
        page=page,
        text=text,
        geometry=geometry,
        bounding_box=bbox,
        **extra,
    )


def create_feature_from_polygon(
    category: FeatureCategory,
    polygon: Sequence[float],
    page: int,
    ocr_width: float,
    ocr_height: float,
    image_width: float,
    image_height: float,
    text: str = "",
    **extra,
) -> Feature:
    """Feature from an analysis polygon expressed in the analysis page units."""
    bbox = [v / (ocr_width if i % 2 == 0 else ocr_height) for i, v in enumerate(polygon)]
    return create_feature_from_bounding_box(category, bbox, page, image_width, image_height, text=text, **extra)


def normalized_bounding_box(geometry: Sequence[Point], image_width: float, image_height: float) -> List[float]:
    return flatten(_scale(geometry, 1.0 / image_width, 1.0 / image_height))


def create_drawn_region(geometry: Sequence[Point], page: int, image_width: float, image_height: float) -> Feature:
    bbox = normalized_bounding_box(geometry, image_width, image_height)
    cls = FEATURE_CLASSES[FeatureCategory.DRAWN_REGION]
    return cls(
        id=region_id(bbox, page),
        category=FeatureCategory.DRAWN_REGION,
        page=page,
        text="",
        geometry=list(geometry),
        bounding_box=bbox,
    )


def rederive_identity(feature: Feature, image_width: float, image_height: float) -> str:
    """Recompute bounding box and id from the current geometry. Returns the new id."""
    feature.bounding_box = normalized_bounding_box(feature.geometry, image_width, image_height)
    feature.id = region_id(feature.bounding_box, feature.page)
    return feature.id


# ---------------------------
# Store
# ---------------------------

class FeatureStore:
    """
    Canonical on-surface features, partitioned by layer.

    Ids are unique per layer only; adding a feature whose id already exists in
    the layer replaces the old one. Features of the drawn layers are mirrored
    into a shared editable collection used for vertex edits and snapping.
    """

    def __init__(self):
        self._layers: Dict[Layer, Dict[str, Feature]] = {layer: {} for layer in Layer}
        self._visible: Dict[Layer, bool] = {layer: True for layer in Layer}
        self._editable: Dict[Tuple[Layer, str], Feature] = {}
        self._hovered_label: Optional[str] = None

    # basic CRUD

    def add(self, layer: Layer, feature: Feature) -> Feature:
        existing = self._layers[layer].get(feature.id)
        if existing is not None and existing is not feature:
            logger.debug("replacing feature %s in %s", feature.id, layer.value)
        self._layers[layer][feature.id] = feature
        if layer in EDITABLE_LAYERS and self._visible[layer]:
            self._editable[(layer, feature.id)] = feature
        return feature

    def add_many(self, layer: Layer, features: Iterable[Feature]) -> None:
        for feature in features:
            self.add(layer, feature)

    def remove(self, layer: Layer, feature: Union[Feature, str]) -> Optional[Feature]:
        feature_id = feature if isinstance(feature, str) else feature.id
        removed = self._layers[layer].pop(feature_id, None)
        self._editable.pop((layer, feature_id), None)
        return removed

    def remove_many(self, layer: Layer, features: Iterable[Union[Feature, str]]) -> None:
        for feature in list(features):
            self.remove(layer, feature)

    def get(self, layer: Layer, feature_id: str) -> Optional[Feature]:
        return self._layers[layer].get(feature_id)

    def find(self, feature: Feature) -> Optional[Layer]:
        for layer, features in self._layers.items():
            if features.get(feature.id) is feature:
                return layer
        return None

    def rekey(self, layer: Layer, old_id: str, feature: Feature) -> None:
        """Re-index a feature whose id changed after a geometry edit."""
        if self._layers[layer].get(old_id) is feature:
            del self._layers[layer][old_id]
        editable = self._editable.pop((layer, old_id), None)
        self._layers[layer][feature.id] = feature
        if editable is not None:
            self._editable[(layer, feature.id)] = feature

    def features(self, layer: Layer) -> List[Feature]:
        return list(self._layers[layer].values())

    def clear(self, layer: Layer) -> None:
        self._layers[layer].clear()
        for key in [k for k in self._editable if k[0] == layer]:
            del self._editable[key]

    def clear_all(self) -> None:
        for layer in Layer:
            self.clear(layer)

    # spatial queries

    def features_in_extent(self, layer: Layer, query: Extent) -> List[Feature]:
        return [f for f in self._layers[layer].values() if f.geometry and extents_intersect(extent(f.geometry), query)]

    def features_at(self, layer: Layer, coordinate: Point, tolerance: float = 0.0) -> List[Feature]:
        return [f for f in self._layers[layer].values() if polygon_contains(f.geometry, coordinate, tolerance)]

    # editable collection

    def editable_features(self) -> List[Feature]:
        return list(self._editable.values())

    def editable_entries(self) -> List[Tuple[Layer, Feature]]:
        return [(layer, f) for (layer, _), f in self._editable.items()]

    # visibility

    def is_visible(self, layer: Layer) -> bool:
        return self._visible[layer]

    def visible_layers(self) -> List[Layer]:
        return [layer for layer in Layer if self._visible[layer]]

    def toggle_visibility(self, layer: Layer, visible: Optional[bool] = None) -> bool:
        visible = (not self._visible[layer]) if visible is None else visible
        self._visible[layer] = visible
        if layer in EDITABLE_LAYERS:
            if visible:
                for feature in self._layers[layer].values():
                    self._editable[(layer, feature.id)] = feature
            else:
                for key in [k for k in self._editable if k[0] == layer]:
                    del self._editable[key]
        return visible

    # hover highlight

    def set_hovered_label(self, label_name: Optional[str]) -> None:
        self._hovered_label = label_name
        for layer in (Layer.LABEL, Layer.DRAWN_REGION_LABEL):
            for feature in self._layers[layer].values():
                feature.highlighted = label_name is not None and feature.assigned_label == label_name

    @property
    def hovered_label(self) -> Optional[str]:
        return self._hovered_label
