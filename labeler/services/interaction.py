import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from labeler.core.config import Settings, settings as default_settings
from labeler.models.features import HIT_TEST_ORDER, Feature, Layer
from labeler.models.labels import LabelValueCandidate
from labeler.models.schema import FieldType
from labeler.services.feature_store import FeatureStore, create_drawn_region, rederive_identity
from labeler.services.selection import SelectionSet
from labeler.utils.geometry import (
    Point,
    distance,
    extent,
    extent_area,
    extent_from_corners,
    rectangle_from_extent,
    rotate,
    unflatten,
)

logger = logging.getLogger(__name__)

# inline menu placement, in viewport pixels
MENU_SHIFT_X = -125
MENU_DOWN_SHIFT_Y = 10
MENU_UP_SHIFT_Y = -30
MENU_BOTTOM_OFFSET = 20

ZOOM_STEP = 0.3


class InteractionState(str, Enum):
    IDLE = "idle"
    GROUP_SELECTING = "group_selecting"
    DRAWING = "drawing"
    MODIFYING_VERTEX = "modifying_vertex"
    SNAPPED = "snapped"
    PANNING = "panning"


# ---------------------------
# Commits emitted to subscribers
# ---------------------------

class MenuPosition(BaseModel):
    top: float
    left: float
    placement: str  # "above" / "below"


class RegionDrawn(BaseModel):
    feature: Feature


class GeometryChange(BaseModel):
    old_id: str
    feature: Feature
    old_candidate: LabelValueCandidate
    new_candidate: LabelValueCandidate
    label_name: Optional[str] = None


class GeometryChanged(BaseModel):
    changes: List[GeometryChange] = Field(default_factory=list)


class SelectionFinished(BaseModel):
    candidates: List[LabelValueCandidate] = Field(default_factory=list)
    enabled_types: List[FieldType] = Field(default_factory=list)
    menu: Optional[MenuPosition] = None


class RegionDeleted(BaseModel):
    feature_id: str


class MenuClosed(BaseModel):
    pass


Commit = Union[RegionDrawn, GeometryChanged, SelectionFinished, RegionDeleted, MenuClosed]


def compute_menu_position(pixel: Point, viewport_height: float, menu_height: float) -> MenuPosition:
    """Open the inline menu below the pointer when it fits, above it otherwise."""
    x, y = pixel
    bottom = y + MENU_DOWN_SHIFT_Y + menu_height + MENU_BOTTOM_OFFSET
    if bottom > viewport_height:
        return MenuPosition(top=y - menu_height + MENU_UP_SHIFT_Y, left=x + MENU_SHIFT_X, placement="above")
    return MenuPosition(top=y + MENU_DOWN_SHIFT_Y, left=x + MENU_SHIFT_X, placement="below")


# ---------------------------
# Viewport
# ---------------------------

class Viewport:
    """
    Maps viewport pixels to surface coordinates (image pixels, y down) for a
    zoomable, rotatable page. At zoom 0 the whole image fits the viewport.
    """

    def __init__(self, width: float, height: float, image_width: float, image_height: float, angle: float = 0.0):
        self.width = width
        self.height = height
        self.image_width = image_width
        self.image_height = image_height
        self.angle = angle
        self.zoom = 0.0
        self.center: Point = (image_width / 2, image_height / 2)

    @property
    def resolution(self) -> float:
        base = max(self.image_width / self.width, self.image_height / self.height)
        return base * 2 ** (-self.zoom)

    def pixel_to_coordinate(self, pixel: Point) -> Point:
        res = self.resolution
        dx = (pixel[0] - self.width / 2) * res
        dy = (pixel[1] - self.height / 2) * res
        rx, ry = rotate((dx, dy), -self.angle)
        return (self.center[0] + rx, self.center[1] + ry)

    def coordinate_to_pixel(self, coordinate: Point) -> Point:
        rx, ry = rotate((coordinate[0] - self.center[0], coordinate[1] - self.center[1]), self.angle)
        res = self.resolution
        return (rx / res + self.width / 2, ry / res + self.height / 2)

    def pixels_to_distance(self, pixels: float) -> float:
        return pixels * self.resolution

    def contains_coordinate(self, coordinate: Point) -> bool:
        return 0 <= coordinate[0] <= self.image_width and 0 <= coordinate[1] <= self.image_height

    def pan_by(self, dx: float, dy: float) -> None:
        mx, my = rotate((dx * self.resolution, dy * self.resolution), -self.angle)
        self.center = (self.center[0] - mx, self.center[1] - my)

    def zoom_in(self) -> None:
        self.zoom += ZOOM_STEP

    def zoom_out(self) -> None:
        self.zoom -= ZOOM_STEP

    def reset_zoom(self) -> None:
        self.zoom = 0.0

    def reset_center(self) -> None:
        self.center = (self.image_width / 2, self.image_height / 2)

    def set_image(self, image_width: float, image_height: float, angle: float = 0.0) -> None:
        self.image_width = image_width
        self.image_height = image_height
        self.angle = angle
        self.reset_zoom()
        self.reset_center()


# ---------------------------
# State machine
# ---------------------------

GrabbedVertex = Tuple[Layer, Feature, int]


class InteractionStateMachine:
    """
    Pointer/keyboard driven editor over a FeatureStore.

    Every handler runs to completion synchronously; observers receive commits
    (drawn regions, geometry changes, finished selections) through subscribe().
    """

    def __init__(
        self,
        features: FeatureStore,
        selection: SelectionSet,
        viewport: Viewport,
        page: int = 1,
        settings: Optional[Settings] = None,
    ):
        self.features = features
        self.selection = selection
        self.viewport = viewport
        self.page = page
        self.settings = settings or default_settings

        self.state = InteractionState.IDLE
        self.draw_region_mode = False
        self.group_select_mode = False
        self.pointer_on_image = True
        self.pan_enabled = True
        self.menu: Optional[MenuPosition] = None

        self._listeners: List[Callable[[Commit], None]] = []
        self._last_pixel: Point = (0.0, 0.0)
        self._pan_last_pixel: Optional[Point] = None
        self._draw_path: List[Point] = []
        self._box_start: Optional[Point] = None
        self._box_end: Optional[Point] = None
        self._hit_layer: Optional[Layer] = None
        self._swiping = False
        self._snap_vertex: Optional[Point] = None
        self._grabbed: List[GrabbedVertex] = []
        self._modify_snapshot: Dict[str, List[float]] = {}

    # ---------------------------
    # subscription
    # ---------------------------

    def subscribe(self, callback: Callable[[Commit], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, commit: Commit) -> None:
        for callback in list(self._listeners):
            callback(commit)

    def _set_state(self, state: InteractionState) -> None:
        if state != self.state:
            logger.debug("interaction %s -> %s", self.state.value, state.value)
            self.state = state

    def _rest_state(self) -> InteractionState:
        return InteractionState.GROUP_SELECTING if self.group_select_mode else InteractionState.IDLE

    @property
    def selection_enabled(self) -> bool:
        return not self.draw_region_mode and not self.group_select_mode

    @property
    def modify_snapshot(self) -> Dict[str, List[float]]:
        return dict(self._modify_snapshot)

    @property
    def cursor(self) -> str:
        if self.state == InteractionState.MODIFYING_VERTEX:
            return "grabbing"
        if self.state == InteractionState.SNAPPED:
            return "grab"
        if self.state == InteractionState.PANNING:
            return "move"
        if self.draw_region_mode:
            return "crosshair"
        return "default"

    # ---------------------------
    # pointer events
    # ---------------------------

    def pointer_down(self, pixel: Point) -> None:
        self._last_pixel = pixel
        if self.menu is not None:
            self.menu = None
            self._emit(MenuClosed())

        if self.state == InteractionState.SNAPPED:
            self._start_modify()
            return

        coordinate = self.viewport.pixel_to_coordinate(pixel)
        if self.draw_region_mode:
            self._draw_path = [coordinate]
            self._set_state(InteractionState.DRAWING)
            return
        if self.group_select_mode:
            self._box_start = self._box_end = coordinate
            self._set_state(InteractionState.GROUP_SELECTING)
            return

        hit = self._hit_test(coordinate)
        self._hit_layer = hit[0] if hit else None
        if hit is not None:
            layer, feature = hit
            self.selection.toggle(feature)
            if layer != Layer.POD:
                self.pan_enabled = False
                self._swiping = True
                return
        self._pan_last_pixel = pixel
        self._set_state(InteractionState.PANNING)

    def pointer_move(self, pixel: Point) -> None:
        self._last_pixel = pixel
        coordinate = self.viewport.pixel_to_coordinate(pixel)

        if self.state == InteractionState.MODIFYING_VERTEX:
            self._move_vertex(coordinate)
        elif self.state == InteractionState.DRAWING:
            self._draw_path.append(coordinate)
        elif self.state == InteractionState.PANNING:
            if self.pan_enabled and self._pan_last_pixel is not None:
                self.viewport.pan_by(pixel[0] - self._pan_last_pixel[0], pixel[1] - self._pan_last_pixel[1])
            self._pan_last_pixel = pixel
        elif self._box_start is not None:
            self._box_end = coordinate
        elif self._swiping:
            tolerance = self.viewport.pixels_to_distance(self.settings.hit_tolerance_px)
            for feature in self.features.features_at(Layer.TEXT, coordinate, tolerance):
                self.selection.add(feature)
        else:
            self._update_snap(coordinate)

    def pointer_up(self, pixel: Point) -> None:
        self._last_pixel = pixel
        if self.state == InteractionState.DRAWING:
            self._end_draw()
            return
        if self.state == InteractionState.MODIFYING_VERTEX:
            self._end_modify()
            return
        if self._box_start is not None:
            self._end_group_box()
            return

        hit_layer = self._hit_layer
        self._hit_layer = None
        self._swiping = False
        self._pan_last_pixel = None
        if self.state == InteractionState.PANNING:
            self._set_state(self._rest_state())
        if self.selection_enabled:
            self.pan_enabled = True
            if hit_layer is not None:
                self.finish_selection()

    def pointer_enter(self) -> None:
        self.pointer_on_image = True

    def pointer_leave(self) -> None:
        self.pointer_on_image = False
        if self.state == InteractionState.DRAWING:
            self.cancel_draw()
        elif self.state == InteractionState.SNAPPED:
            self._snap_vertex = None
            self._set_state(self._rest_state())

    # ---------------------------
    # keyboard events
    # ---------------------------

    def key_down(self, key: str) -> None:
        if key == "Escape":
            if self.state == InteractionState.DRAWING:
                self.cancel_draw()
            elif self.state == InteractionState.MODIFYING_VERTEX:
                self.cancel_modify()
        elif key == "Shift":
            self.group_select_mode = True
            if self.state == InteractionState.IDLE:
                self._set_state(InteractionState.GROUP_SELECTING)

    def key_up(self, key: str) -> None:
        if key == "Shift":
            self.group_select_mode = False
            if self.state == InteractionState.GROUP_SELECTING and self._box_start is None:
                self._set_state(InteractionState.IDLE)

    # ---------------------------
    # modes and commands
    # ---------------------------

    def toggle_draw_region_mode(self, enabled: Optional[bool] = None) -> bool:
        self.draw_region_mode = (not self.draw_region_mode) if enabled is None else enabled
        if not self.draw_region_mode:
            if self.state == InteractionState.DRAWING:
                self.cancel_draw()
            if self.state == InteractionState.SNAPPED:
                self._snap_vertex = None
                self._set_state(self._rest_state())
        return self.draw_region_mode

    def set_page(self, page: int) -> None:
        if self.state == InteractionState.DRAWING:
            self.cancel_draw()
        elif self.state == InteractionState.MODIFYING_VERTEX:
            self.cancel_modify()
        self.page = page
        self.selection.clear()

    def clear_selection(self) -> None:
        self.selection.clear()
        self.finish_selection()

    def delete_drawn_region(self, feature_id: str) -> bool:
        """Remove an unassigned drawn region and drop it from the selection."""
        feature = self.features.get(Layer.DRAWN_REGION, feature_id)
        if feature is None or feature.assigned_label:
            return False
        self.features.remove(Layer.DRAWN_REGION, feature)
        self.selection.remove(feature)
        self._emit(RegionDeleted(feature_id=feature_id))
        return True

    def finish_selection(self) -> SelectionFinished:
        candidates = self.selection.candidates()
        menu = None
        if candidates:
            menu = compute_menu_position(
                self._last_pixel,
                self.settings.viewport_height,
                self.settings.inline_label_menu_height,
            )
        self.menu = menu
        commit = SelectionFinished(
            candidates=candidates,
            enabled_types=self.selection.enabled_field_types() if candidates else [],
            menu=menu,
        )
        self._emit(commit)
        return commit

    # ---------------------------
    # hit testing and snapping
    # ---------------------------

    def _hit_test(self, coordinate: Point) -> Optional[Tuple[Layer, Feature]]:
        tolerance = self.viewport.pixels_to_distance(self.settings.hit_tolerance_px)
        for layer in HIT_TEST_ORDER:
            if not self.features.is_visible(layer):
                continue
            hits = self.features.features_at(layer, coordinate, tolerance)
            if hits:
                return layer, hits[0]
        return None

    def _nearest_vertex(self, coordinate: Point, exclude: Tuple[Feature, ...] = ()) -> Optional[Point]:
        tolerance = self.viewport.pixels_to_distance(self.settings.snap_tolerance_px)
        best: Optional[Point] = None
        best_distance = tolerance
        for feature in self.features.editable_features():
            if any(feature is f for f in exclude):
                continue
            for vertex in feature.geometry:
                d = distance(vertex, coordinate)
                if d <= best_distance:
                    best, best_distance = vertex, d
        return best

    def _update_snap(self, coordinate: Point) -> None:
        if not (self.draw_region_mode and self.pointer_on_image):
            return
        if self.state not in (InteractionState.IDLE, InteractionState.GROUP_SELECTING, InteractionState.SNAPPED):
            return
        vertex = self._nearest_vertex(coordinate)
        if vertex is not None:
            self._snap_vertex = vertex
            self._set_state(InteractionState.SNAPPED)
        elif self.state == InteractionState.SNAPPED:
            self._snap_vertex = None
            self._set_state(self._rest_state())

    # ---------------------------
    # drawing
    # ---------------------------

    def _end_draw(self) -> None:
        path, self._draw_path = self._draw_path, []
        self._set_state(self._rest_state())
        box = extent(path)
        if extent_area(box) == 0:
            logger.debug("discarding zero-area region")
            return
        feature = create_drawn_region(
            rectangle_from_extent(box),
            self.page,
            self.viewport.image_width,
            self.viewport.image_height,
        )
        self.features.add(Layer.DRAWN_REGION, feature)
        self.selection.add(feature)
        self._emit(RegionDrawn(feature=feature))
        self.finish_selection()

    def cancel_draw(self) -> None:
        """Discard the shape in progress; draw-region mode stays armed."""
        self._draw_path = []
        self._set_state(self._rest_state())

    # ---------------------------
    # vertex modification
    # ---------------------------

    def _start_modify(self) -> None:
        vertex = self._snap_vertex
        if vertex is None:
            self._set_state(self._rest_state())
            return
        tolerance = self.viewport.pixels_to_distance(self.settings.snap_tolerance_px)
        self._grabbed = []
        self._modify_snapshot = {}
        for layer, feature in self.features.editable_entries():
            for index, point in enumerate(feature.geometry):
                if distance(point, vertex) <= tolerance:
                    self._grabbed.append((layer, feature, index))
                    self._modify_snapshot.setdefault(feature.id, feature.flat_coordinates())
                    break
        self._set_state(InteractionState.MODIFYING_VERTEX)

    def _move_vertex(self, coordinate: Point) -> None:
        grabbed = tuple(f for _, f, _ in self._grabbed)
        target = self._nearest_vertex(coordinate, exclude=grabbed) or coordinate
        for _, feature, index in self._grabbed:
            geometry = list(feature.geometry)
            geometry[index] = target
            feature.geometry = geometry

    def _touched_features(self) -> List[Tuple[Layer, Feature]]:
        seen: List[Tuple[Layer, Feature]] = []
        for layer, feature, _ in self._grabbed:
            if not any(f is feature for _, f in seen):
                seen.append((layer, feature))
        return seen

    def _end_modify(self) -> None:
        changes: List[GeometryChange] = []
        for layer, feature in self._touched_features():
            before = self._lookup_snapshot(feature)
            if before is None or feature.flat_coordinates() == before:
                continue
            # a collapsed ring has no usable extent; put the original back
            if len(set(feature.geometry)) < 3:
                logger.warning("vertex edit collapsed region %s; restoring it", feature.id)
                feature.geometry = unflatten(before)
                continue
            old_id = feature.id
            old_candidate = self._candidate(feature)
            rederive_identity(feature, self.viewport.image_width, self.viewport.image_height)
            self.features.rekey(layer, old_id, feature)
            changes.append(GeometryChange(
                old_id=old_id,
                feature=feature,
                old_candidate=old_candidate,
                new_candidate=self._candidate(feature),
                label_name=feature.assigned_label,
            ))
        self._grabbed = []
        self._modify_snapshot = {}
        self._snap_vertex = None
        self._set_state(self._rest_state())
        self._update_snap(self.viewport.pixel_to_coordinate(self._last_pixel))
        if changes:
            self._emit(GeometryChanged(changes=changes))

    def cancel_modify(self) -> None:
        """Put every touched feature back exactly as it was when the drag started."""
        for _, feature in self._touched_features():
            before = self._lookup_snapshot(feature)
            if before is not None:
                feature.geometry = unflatten(before)
        self._grabbed = []
        self._modify_snapshot = {}
        self._snap_vertex = None
        self._set_state(self._rest_state())

    def _lookup_snapshot(self, feature: Feature) -> Optional[List[float]]:
        return self._modify_snapshot.get(feature.id)

    def _candidate(self, feature: Feature) -> LabelValueCandidate:
        return LabelValueCandidate(
            bounding_boxes=[list(feature.bounding_box)],
            page=feature.page,
            text=feature.text,
            category=feature.category,
            already_assigned_label_name=feature.assigned_label,
        )

    # ---------------------------
    # group selection
    # ---------------------------

    def _end_group_box(self) -> None:
        box = extent_from_corners(self._box_start, self._box_end or self._box_start)
        self._box_start = self._box_end = None
        for layer in self.features.visible_layers():
            for feature in self.features.features_in_extent(layer, box):
                self.selection.toggle(feature)
        self._set_state(self._rest_state())
        self.finish_selection()
