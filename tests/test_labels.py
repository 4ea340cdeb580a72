import pytest

from labeler.core.errors import LabelValidationError, UnknownFieldError
from labeler.models.analysis import AnalyzeResult
from labeler.models.features import FeatureCategory
from labeler.models.labels import Label, LabelValue
from labeler.models.schema import FieldLocation, FieldType
from labeler.utils.labels import (
    build_label_path,
    build_region_orders,
    decode_label_string,
    encode_label_string,
    get_field_key_from_label,
    get_table_field_key_from_label,
    replace_label_segment,
    resolve_field_type,
    sort_label_values,
    split_label_path,
    validate_assignment,
)

from helpers import box, candidate, sample_schema


@pytest.mark.parametrize("raw, encoded", [
    ("Total", "Total"),
    ("a/b", "a%2Fb"),
    ("100%", "100%25"),
    ("50%/2F", "50%25%2F2F"),
])
def test_label_string_codec(raw, encoded):
    assert encode_label_string(raw) == encoded
    assert decode_label_string(encoded) == raw


def test_label_paths():
    path = build_label_path("a/b", 0, "Col 1")
    assert path == "a%2Fb/0/Col 1"
    assert split_label_path(path) == ["a/b", "0", "Col 1"]

    label = Label(label=path)
    assert get_field_key_from_label(label) == "a/b"
    assert get_table_field_key_from_label(label, FieldLocation.FIELD) == "0"
    assert get_table_field_key_from_label(label, FieldLocation.DEFINITION) == "Col 1"
    assert get_table_field_key_from_label(Label(label="Name"), FieldLocation.FIELD) is None
    assert replace_label_segment(label, 0, "x/y").label == "x%2Fy/0/Col 1"


def test_resolve_field_type():
    schema = sample_schema()
    assert resolve_field_type("Total", schema.fields, schema.definitions) == FieldType.NUMBER
    assert resolve_field_type("items/7/COLUMN2", schema.fields, schema.definitions) == FieldType.STRING
    assert resolve_field_type("grid/ROW2/COLUMN2", schema.fields, schema.definitions) == FieldType.DATE


@pytest.mark.parametrize("path", ["Nope", "Name/0/COLUMN1", "grid/ROW9/COLUMN1", "items/0", "items/0/COLUMN9"])
def test_unresolvable_paths(path):
    schema = sample_schema()
    with pytest.raises(UnknownFieldError):
        resolve_field_type(path, schema.fields, schema.definitions)


def test_validate_assignment():
    validate_assignment([candidate(0, 0)], FieldType.DATE)
    validate_assignment([candidate(0, 0, category=FeatureCategory.DRAWN_REGION)], FieldType.SIGNATURE)
    with pytest.raises(LabelValidationError):
        validate_assignment([candidate(0, 0)], FieldType.SIGNATURE)
    with pytest.raises(LabelValidationError):
        validate_assignment([candidate(0, 0, category=FeatureCategory.CHECKBOX)], FieldType.STRING)


def test_reading_order_uses_analysis_ranks_then_position():
    result = AnalyzeResult.model_validate({
        "pages": [{
            "pageNumber": 1,
            "width": 10,
            "height": 10,
            # analysis order puts the lower word first
            "words": [
                {"content": "second", "polygon": [5, 5, 6, 5, 6, 6, 5, 6]},
                {"content": "first", "polygon": [1, 1, 2, 1, 2, 2, 1, 2]},
            ],
            "selectionMarks": [{"state": "selected", "polygon": [8, 0, 9, 0, 9, 1, 8, 1]}],
        }],
    })
    orders = build_region_orders(result)
    assert sorted(orders[1].values()) == [0, 1, 2]

    lower = LabelValue(page=1, text="second", bounding_boxes=[[0.5, 0.5, 0.6, 0.5, 0.6, 0.6, 0.5, 0.6]])
    upper = LabelValue(page=1, text="first", bounding_boxes=[[0.1, 0.1, 0.2, 0.1, 0.2, 0.2, 0.1, 0.2]])
    mark = LabelValue(page=1, text="selected", bounding_boxes=[[0.8, 0.0, 0.9, 0.0, 0.9, 0.1, 0.8, 0.1]])
    assert [v.text for v in sort_label_values([mark, upper, lower], orders)] == ["second", "first", "selected"]

    # without ranks, top-to-bottom then left-to-right
    assert [v.text for v in sort_label_values([mark, lower, upper], None)] == ["selected", "first", "second"]


def test_values_on_earlier_pages_sort_first():
    later = LabelValue(page=2, bounding_boxes=[box(0.0, 0.0)])
    earlier = LabelValue(page=1, bounding_boxes=[box(0.5, 0.5)])
    assert sort_label_values([later, earlier], None) == [earlier, later]
