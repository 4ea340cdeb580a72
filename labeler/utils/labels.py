import functools
import json
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from labeler.core.errors import LabelValidationError, UnknownFieldError
from labeler.models.analysis import AnalyzeResult
from labeler.models.features import FeatureCategory
from labeler.models.labels import Label, LabelValue, LabelValueCandidate
from labeler.models.schema import (
    ArrayField,
    Definition,
    FieldLocation,
    FieldType,
    ObjectField,
)
from labeler.utils.geometry import extent, unflatten
from labeler.utils.ids import region_id

T = TypeVar("T")

# page -> region id -> rank
RegionOrders = Dict[int, Dict[str, int]]

TEXT_FIELD_TYPES = (FieldType.STRING, FieldType.DATE, FieldType.TIME, FieldType.INTEGER, FieldType.NUMBER)
DRAWABLE_FIELD_TYPES = TEXT_FIELD_TYPES + (FieldType.SELECTION_MARK, FieldType.SIGNATURE)

SUPPORTED_FIELD_TYPES_BY_CATEGORY: Dict[FeatureCategory, Tuple[FieldType, ...]] = {
    FeatureCategory.TEXT: TEXT_FIELD_TYPES,
    FeatureCategory.CHECKBOX: (FieldType.SELECTION_MARK,),
    FeatureCategory.DRAWN_REGION: DRAWABLE_FIELD_TYPES,
    FeatureCategory.LABEL: DRAWABLE_FIELD_TYPES,
}


# ---------------------------
# Label path codec
# ---------------------------

def encode_label_string(segment: str) -> str:
    return segment.replace("%", "%25").replace("/", "%2F")


def decode_label_string(segment: str) -> str:
    return segment.replace("%2F", "/").replace("%2f", "/").replace("%25", "%")


def build_label_path(*segments: Any) -> str:
    return "/".join(encode_label_string(str(s)) for s in segments)


def split_label_path(label_name: str) -> List[str]:
    return [decode_label_string(s) for s in label_name.split("/")]


def get_field_key_from_label(label: Label) -> str:
    return decode_label_string(label.label.split("/")[0])


def get_table_field_key_from_label(label: Label, location: FieldLocation) -> Optional[str]:
    segments = label.label.split("/")
    index = 1 if location == FieldLocation.FIELD else 2
    if len(segments) <= index:
        return None
    return decode_label_string(segments[index])


def replace_label_segment(label: Label, index: int, new_value: str) -> Label:
    segments = label.label.split("/")
    segments[index] = encode_label_string(new_value)
    return label.model_copy(update={"label": "/".join(segments)})


# ---------------------------
# Candidates and field types
# ---------------------------

def unique_by_keep_first(items: Iterable[T], key) -> List[T]:
    seen = set()
    result: List[T] = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        result.append(item)
    return result


def boxes_key(bounding_boxes: Sequence[Sequence[float]]) -> str:
    return json.dumps([list(b) for b in bounding_boxes])


def dedupe_candidates(candidates: Iterable[LabelValueCandidate]) -> List[LabelValueCandidate]:
    return unique_by_keep_first(candidates, lambda c: boxes_key(c.bounding_boxes))


def enabled_field_types(categories: Sequence[FeatureCategory]) -> List[FieldType]:
    """Field types the inline menu offers for a selection made of these categories."""
    if len(categories) == 1 and categories[0] == FeatureCategory.CHECKBOX:
        return list(SUPPORTED_FIELD_TYPES_BY_CATEGORY[FeatureCategory.CHECKBOX])
    if FeatureCategory.DRAWN_REGION in categories:
        return list(SUPPORTED_FIELD_TYPES_BY_CATEGORY[FeatureCategory.DRAWN_REGION])
    if FeatureCategory.LABEL in categories:
        return list(SUPPORTED_FIELD_TYPES_BY_CATEGORY[FeatureCategory.LABEL])
    return list(SUPPORTED_FIELD_TYPES_BY_CATEGORY[FeatureCategory.TEXT])


def make_label_value(candidate: LabelValueCandidate) -> LabelValue:
    return LabelValue(page=candidate.page, text=candidate.text, bounding_boxes=candidate.bounding_boxes)


# ---------------------------
# Schema resolution
# ---------------------------

def resolve_field_type(label_name: str, fields: Sequence[Any], definitions: Dict[str, Definition]) -> FieldType:
    """
    Resolve the leaf field type a label path points at.

    `field` -> the field itself; `table/row/col` -> the cell type from the table's Definition.
    Raises UnknownFieldError when any segment names nothing in the schema.
    """
    segments = split_label_path(label_name)
    field_key = segments[0]
    field = next((f for f in fields if f.field_key == field_key), None)
    if field is None:
        raise UnknownFieldError(field_key)
    if len(segments) == 1:
        return field.field_type

    if isinstance(field, ArrayField):
        definition_name = field.item_type
    elif isinstance(field, ObjectField):
        child = next((c for c in field.fields if c.field_key == segments[1]), None)
        if child is None:
            raise UnknownFieldError(label_name)
        definition_name = child.field_type
    else:
        raise UnknownFieldError(label_name)

    definition = definitions.get(definition_name)
    if definition is None or len(segments) < 3:
        raise UnknownFieldError(label_name)
    cell = next((f for f in definition.fields if f.field_key == segments[2]), None)
    if cell is None:
        raise UnknownFieldError(label_name)
    return cell.field_type


def validate_assignment(candidates: Sequence[LabelValueCandidate], field_type: FieldType) -> None:
    for candidate in candidates:
        supported = SUPPORTED_FIELD_TYPES_BY_CATEGORY[candidate.category]
        if field_type not in supported:
            raise LabelValidationError(
                f"A {candidate.category.value} region can't be assigned to a field of type "
                f"'{FieldType(field_type).value}'."
            )


def label_resolves(label: Label, fields: Sequence[Any], definitions: Dict[str, Definition]) -> bool:
    try:
        resolve_field_type(label.label, fields, definitions)
    except UnknownFieldError:
        return False
    return True


# ---------------------------
# Reading order
# ---------------------------

def _normalize_polygon(polygon: Sequence[float], width: float, height: float) -> List[float]:
    return [v / (width if i % 2 == 0 else height) for i, v in enumerate(polygon)]


def build_region_orders(analyze_result: AnalyzeResult) -> RegionOrders:
    """Rank every recognized word, then every selection mark, of each page in analysis order."""
    orders: RegionOrders = {}
    for page in analyze_result.pages:
        ranks: Dict[str, int] = {}
        rank = 0
        regions = [w.polygon for w in page.words] + [m.polygon for m in page.selection_marks]
        for polygon in regions:
            if not polygon:
                continue
            key = region_id(_normalize_polygon(polygon, page.width, page.height), page.page_number)
            if key not in ranks:
                ranks[key] = rank
                rank += 1
        orders[page.page_number] = ranks
    return orders


def value_rank(value: LabelValue, orders: Optional[RegionOrders]) -> Optional[int]:
    if not orders or not value.bounding_boxes:
        return None
    return orders.get(value.page, {}).get(region_id(value.bounding_boxes[0], value.page))


def _top_left(value: LabelValue) -> Tuple[float, float]:
    if not value.bounding_boxes or len(value.bounding_boxes[0]) < 2:
        return (0.0, 0.0)
    minx, miny, _, _ = extent(unflatten(value.bounding_boxes[0]))
    return (miny, minx)


def compare_order(a: LabelValue, b: LabelValue, orders: Optional[RegionOrders]) -> int:
    if a.page != b.page:
        return a.page - b.page
    rank_a, rank_b = value_rank(a, orders), value_rank(b, orders)
    if rank_a is not None and rank_b is not None:
        return rank_a - rank_b
    pos_a, pos_b = _top_left(a), _top_left(b)
    return (pos_a > pos_b) - (pos_a < pos_b)


def sort_label_values(values: Sequence[LabelValue], orders: Optional[RegionOrders]) -> List[LabelValue]:
    return sorted(values, key=functools.cmp_to_key(lambda a, b: compare_order(a, b, orders)))
