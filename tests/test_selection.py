from labeler.models.features import FeatureCategory
from labeler.models.schema import FieldType, PrimitiveField
from labeler.services.feature_store import create_feature_from_bounding_box
from labeler.services.selection import SelectionSet, inline_menu_items
from labeler.utils.labels import DRAWABLE_FIELD_TYPES, TEXT_FIELD_TYPES, enabled_field_types

from helpers import box


def feature(category, x=0.1, **extra):
    return create_feature_from_bounding_box(category, box(x, 0.1), 1, 100, 100, text="txt", **extra)


def test_single_checkbox_limits_to_selection_mark():
    assert enabled_field_types([FeatureCategory.CHECKBOX]) == [FieldType.SELECTION_MARK]


def test_checkbox_with_text_falls_back_to_text_types():
    assert enabled_field_types([FeatureCategory.CHECKBOX, FeatureCategory.TEXT]) == list(TEXT_FIELD_TYPES)


def test_drawn_region_widens_to_drawable_types():
    assert enabled_field_types([FeatureCategory.TEXT, FeatureCategory.DRAWN_REGION]) == list(DRAWABLE_FIELD_TYPES)
    assert enabled_field_types([FeatureCategory.LABEL]) == list(DRAWABLE_FIELD_TYPES)


def test_plain_text_selection():
    assert enabled_field_types([FeatureCategory.TEXT, FeatureCategory.TEXT]) == list(TEXT_FIELD_TYPES)


def test_selection_keeps_order_and_flags_features():
    selection = SelectionSet()
    a, b = feature(FeatureCategory.TEXT), feature(FeatureCategory.TEXT, x=0.5)
    selection.add(b)
    selection.add(a)
    selection.add(b)

    assert selection.features == [b, a]
    assert a.selected and b.selected

    assert selection.toggle(b) is False
    assert not b.selected
    selection.clear()
    assert len(selection) == 0 and not a.selected


def test_candidates_project_selected_features():
    selection = SelectionSet()
    labeled = feature(FeatureCategory.LABEL, assigned_label="Total")
    selection.add(labeled)

    (cand,) = selection.candidates()
    assert cand.bounding_boxes == [labeled.bounding_box]
    assert cand.page == 1
    assert cand.text == "txt"
    assert cand.category == FeatureCategory.LABEL
    assert cand.already_assigned_label_name == "Total"


def test_inline_menu_filters_fields_by_type_and_search():
    fields = [
        PrimitiveField(field_key="Invoice Date", field_type=FieldType.DATE),
        PrimitiveField(field_key="Invoice Total", field_type=FieldType.NUMBER),
        PrimitiveField(field_key="Paid", field_type=FieldType.SELECTION_MARK),
    ]
    menu = inline_menu_items(fields, list(TEXT_FIELD_TYPES), "invoice")
    assert [f.field_key for f in menu.fields] == ["Invoice Date", "Invoice Total"]

    menu = inline_menu_items(fields, [FieldType.SELECTION_MARK])
    assert [f.field_key for f in menu.fields] == ["Paid"]


def test_inline_menu_offers_create_options_when_nothing_matches():
    menu = inline_menu_items([], list(DRAWABLE_FIELD_TYPES), "Vendor")
    assert menu.fields == []
    assert menu.create_types == [FieldType.STRING, FieldType.SELECTION_MARK, FieldType.SIGNATURE]

    menu = inline_menu_items([], list(TEXT_FIELD_TYPES), "Vendor")
    assert menu.create_types == [FieldType.STRING]
