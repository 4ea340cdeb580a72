import asyncio

import pytest

from labeler.core.errors import LabelValidationError, PersistenceError, UnknownFieldError
from labeler.models.schema import (
    ArrayField,
    Definition,
    FieldLocation,
    FieldsFile,
    FieldType,
    HeaderType,
    ObjectField,
    PrimitiveField,
    TableType,
    VisualizationHint,
)
from labeler.utils.labels import label_resolves

from helpers import box, build_engines, label


def run(coro):
    return asyncio.run(coro)


def keys(fields):
    return [f.field_key for f in fields]


def assert_consistent(engines, labels_by_doc):
    schema = engines.schema
    for labels in labels_by_doc.values():
        for l in labels:
            assert label_resolves(l, schema.fields, schema.definitions), l.label


@pytest.fixture
def seeded(storage):
    doc1 = [
        label("Name", box(0.1, 0.1)),
        label("Total", box(0.5, 0.5)),
        label("items/0/COLUMN1", box(0.1, 0.6)),
        label("grid/ROW1/COLUMN1", box(0.1, 0.8)),
    ]
    doc2 = [
        label("Name", box(0.2, 0.2), page=2),
        label("items/1/COLUMN2", box(0.3, 0.6)),
        label("grid/ROW2/COLUMN2", box(0.6, 0.8)),
    ]
    engines = build_engines(storage, labels={"doc1.pdf": doc1})
    # doc2 is not loaded yet; its labels only exist on disk
    run(engines.assets.write_labels("doc2.pdf", doc2))
    return engines


def all_labels(engines):
    return {
        "doc1.pdf": run(engines.assets.read_labels("doc1.pdf")),
        "doc2.pdf": run(engines.assets.read_labels("doc2.pdf")),
    }


def label_names(labels):
    return [l.label for l in labels]


def test_rename_field_rewrites_labels_of_every_document(seeded):
    color = seeded.schema.colors["Name"]
    run(seeded.mutations.rename_field("Name", "Full Name"))

    assert "Name" not in keys(seeded.schema.fields)
    assert "Full Name" in keys(seeded.schema.fields)
    assert seeded.schema.colors["Full Name"] == color
    assert "Name" not in seeded.schema.colors

    on_disk = all_labels(seeded)
    assert label_names(on_disk["doc1.pdf"])[0] == "Full Name"
    assert label_names(on_disk["doc2.pdf"])[0] == "Full Name"
    assert not any(l.label == "Name" for labels in on_disk.values() for l in labels)
    assert seeded.store.state.labels["doc1.pdf"] == on_disk["doc1.pdf"]
    assert seeded.store.state.labels["doc2.pdf"] == on_disk["doc2.pdf"]
    assert_consistent(seeded, on_disk)


def test_rename_field_to_existing_key_is_rejected(seeded):
    with pytest.raises(LabelValidationError):
        run(seeded.mutations.rename_field("Name", "Total"))
    assert "Name" in keys(seeded.schema.fields)


def test_rename_dynamic_table_renames_its_definition(seeded):
    run(seeded.mutations.rename_field("items", "lines"))

    lines = seeded.schema.get_field("lines")
    assert isinstance(lines, ArrayField)
    assert lines.item_type == "lines_object"
    assert "items_object" not in seeded.schema.definitions
    assert seeded.schema.definitions["lines_object"].field_key == "lines_object"

    on_disk = all_labels(seeded)
    assert "lines/0/COLUMN1" in label_names(on_disk["doc1.pdf"])
    assert "lines/1/COLUMN2" in label_names(on_disk["doc2.pdf"])
    assert_consistent(seeded, on_disk)


def test_rename_fixed_table_retypes_children(seeded):
    run(seeded.mutations.rename_field("grid", "matrix"))
    matrix = seeded.schema.get_field("matrix")
    assert {c.field_type for c in matrix.fields} == {"matrix_object"}
    assert "grid_object" not in seeded.schema.definitions
    assert_consistent(seeded, all_labels(seeded))


def test_delete_dynamic_table_removes_field_definition_and_labels(seeded):
    run(seeded.mutations.delete_field("items"))

    assert "items" not in keys(seeded.schema.fields)
    assert "items_object" not in seeded.schema.definitions
    assert "grid_object" in seeded.schema.definitions

    on_disk = all_labels(seeded)
    for labels in on_disk.values():
        assert not any(l.label.startswith("items/") for l in labels)
    assert label_names(on_disk["doc1.pdf"]) == ["Name", "Total", "grid/ROW1/COLUMN1"]
    assert_consistent(seeded, on_disk)


def test_delete_field_releases_color_and_labels(seeded):
    run(seeded.mutations.delete_field("Name"))
    assert "Name" not in seeded.schema.colors
    on_disk = all_labels(seeded)
    assert "Name" not in label_names(on_disk["doc1.pdf"]) + label_names(on_disk["doc2.pdf"])


def test_delete_unknown_field_raises(seeded):
    with pytest.raises(UnknownFieldError):
        run(seeded.mutations.delete_field("Nope"))


def test_failed_cascade_write_leaves_state_unchanged(seeded, storage):
    fields_before = seeded.schema.fields
    labels_before = seeded.store.state.labels
    storage.fail_writes = True

    with pytest.raises(PersistenceError):
        run(seeded.mutations.rename_field("Name", "Full Name"))

    assert seeded.schema.fields == fields_before
    assert seeded.store.state.labels == labels_before
    assert seeded.store.state.label_error is not None


def test_add_field_rejects_duplicates(engines, storage):
    with pytest.raises(LabelValidationError):
        run(engines.mutations.add_field(PrimitiveField(field_key="Name", field_type=FieldType.STRING)))
    assert storage.written == []


def test_add_field_persists_schema(engines):
    run(engines.mutations.add_field(PrimitiveField(field_key="Vendor", field_type=FieldType.STRING)))
    assert keys(engines.schema.fields)[-1] == "Vendor"
    assert "Vendor" in engines.schema.colors
    assert keys(run(engines.assets.read_fields()).fields)[-1] == "Vendor"


def test_add_dynamic_table(engines):
    run(engines.mutations.add_table_field("rows", TableType.DYNAMIC, HeaderType.COLUMN))
    table = engines.schema.get_field("rows")
    assert isinstance(table, ArrayField)
    assert table.item_type == "rows_object"
    definition = engines.schema.definitions["rows_object"]
    assert definition.field_type == FieldType.OBJECT
    assert [(f.field_key, f.field_type) for f in definition.fields] == [
        ("COLUMN1", FieldType.STRING), ("COLUMN2", FieldType.STRING),
    ]


def test_add_fixed_table_with_column_headers(engines):
    run(engines.mutations.add_table_field("t", TableType.FIXED, HeaderType.COLUMN))
    table = engines.schema.get_field("t")
    assert isinstance(table, ObjectField)
    assert table.visualization_hint == VisualizationHint.VERTICAL
    assert [(c.field_key, c.field_type) for c in table.fields] == [("ROW1", "t_object"), ("ROW2", "t_object")]
    assert keys(engines.schema.definitions["t_object"].fields) == ["COLUMN1", "COLUMN2"]


def test_add_fixed_table_with_row_headers(engines):
    run(engines.mutations.add_table_field("t", TableType.FIXED, HeaderType.ROW))
    table = engines.schema.get_field("t")
    assert table.visualization_hint == VisualizationHint.HORIZONTAL
    assert keys(table.fields) == ["COLUMN1", "COLUMN2"]
    assert keys(engines.schema.definitions["t_object"].fields) == ["ROW1", "ROW2"]


def test_switch_field_sub_type_only_touches_the_field(seeded):
    definitions = seeded.schema.definitions
    labels = seeded.store.state.labels
    run(seeded.mutations.switch_field_sub_type("Name", FieldType.DATE))
    assert seeded.schema.get_field("Name").field_type == FieldType.DATE
    assert seeded.schema.definitions == definitions
    assert seeded.store.state.labels == labels


def test_switch_field_sub_type_rejects_tables(seeded):
    with pytest.raises(LabelValidationError):
        run(seeded.mutations.switch_field_sub_type("items", FieldType.STRING))


def test_switch_table_field_sub_type_updates_matching_definition_fields(seeded):
    run(seeded.mutations.switch_table_field_sub_type("grid", "COLUMN1", FieldType.NUMBER))
    grid_types = {f.field_key: f.field_type for f in seeded.schema.definitions["grid_object"].fields}
    assert grid_types == {"COLUMN1": FieldType.NUMBER, "COLUMN2": FieldType.DATE}
    items_types = {f.field_key: f.field_type for f in seeded.schema.definitions["items_object"].fields}
    assert items_types["COLUMN1"] == FieldType.STRING


def test_insert_table_field_as_child_and_into_definition(seeded):
    run(seeded.mutations.insert_table_field("grid", "ROW3", 1, FieldLocation.FIELD))
    grid = seeded.schema.get_field("grid")
    assert [(c.field_key, c.field_type) for c in grid.fields] == [
        ("ROW1", "grid_object"), ("ROW3", "grid_object"), ("ROW2", "grid_object"),
    ]

    run(seeded.mutations.insert_table_field("items", "COLUMN0", 0, FieldLocation.DEFINITION))
    cells = seeded.schema.definitions["items_object"].fields
    assert cells[0].field_key == "COLUMN0" and cells[0].field_type == FieldType.STRING


def test_insert_row_into_dynamic_table_is_rejected(seeded):
    with pytest.raises(LabelValidationError):
        run(seeded.mutations.insert_table_field("items", "ROW1", 0, FieldLocation.FIELD))


def test_rename_table_child_rewrites_second_segment(seeded):
    run(seeded.mutations.rename_table_field("grid", "ROW1", "HEAD", FieldLocation.FIELD))
    assert keys(seeded.schema.get_field("grid").fields) == ["HEAD", "ROW2"]
    on_disk = all_labels(seeded)
    assert "grid/HEAD/COLUMN1" in label_names(on_disk["doc1.pdf"])
    assert "grid/ROW2/COLUMN2" in label_names(on_disk["doc2.pdf"])
    assert_consistent(seeded, on_disk)


def test_rename_definition_field_rewrites_third_segment(seeded):
    run(seeded.mutations.rename_table_field("items", "COLUMN1", "Description", FieldLocation.DEFINITION))
    assert keys(seeded.schema.definitions["items_object"].fields) == ["Description", "COLUMN2"]
    on_disk = all_labels(seeded)
    assert "items/0/Description" in label_names(on_disk["doc1.pdf"])
    # same column name in another table is left alone
    assert "grid/ROW1/COLUMN1" in label_names(on_disk["doc1.pdf"])
    assert_consistent(seeded, on_disk)


def test_delete_table_field_drops_its_cells(seeded):
    run(seeded.mutations.delete_table_field("grid", "ROW2", FieldLocation.FIELD))
    on_disk = all_labels(seeded)
    assert "grid/ROW2/COLUMN2" not in label_names(on_disk["doc2.pdf"])
    assert keys(seeded.schema.get_field("grid").fields) == ["ROW1"]

    run(seeded.mutations.delete_table_field("items", "COLUMN2", FieldLocation.DEFINITION))
    on_disk = all_labels(seeded)
    assert "items/1/COLUMN2" not in label_names(on_disk["doc2.pdf"])
    assert_consistent(seeded, on_disk)


def test_update_fields_order(seeded):
    reordered = list(reversed(seeded.schema.fields))
    run(seeded.mutations.update_fields_order(reordered))
    assert keys(seeded.schema.fields) == keys(reordered)

    with pytest.raises(LabelValidationError):
        run(seeded.mutations.update_fields_order(reordered[1:]))


def two_tables(first_item_type, second_item_type, definitions):
    return FieldsFile(
        fields=[
            ArrayField(field_key="a", item_type=first_item_type),
            ArrayField(field_key="c", item_type=second_item_type),
        ],
        definitions={
            name: Definition(
                field_key=name,
                fields=[PrimitiveField(field_key=k, field_type=FieldType.STRING) for k in keys],
            )
            for name, keys in definitions.items()
        },
    )


def test_rename_table_keeps_definition_shared_with_another_table(storage):
    engines = build_engines(
        storage,
        schema=two_tables("row", "row", {"row": ["COL"]}),
        labels={"doc1.pdf": [label("a/0/COL", box(0.1, 0.1)), label("c/0/COL", box(0.1, 0.3))]},
    )
    run(engines.mutations.rename_field("c", "d"))

    assert engines.schema.get_field("a").item_type == "row"
    assert engines.schema.get_field("d").item_type == "d_object"
    assert sorted(engines.schema.definitions) == ["d_object", "row"]
    labels = engines.store.state.labels["doc1.pdf"]
    assert label_names(labels) == ["a/0/COL", "d/0/COL"]
    assert_consistent(engines, {"doc1.pdf": labels})


def test_rename_table_onto_another_tables_definition_is_rejected(storage):
    engines = build_engines(
        storage,
        schema=two_tables("b_object", "c_object", {"b_object": ["X"], "c_object": ["Y"]}),
        labels={"doc1.pdf": [label("a/0/X", box(0.1, 0.1)), label("c/0/Y", box(0.1, 0.3))]},
    )
    definitions = engines.schema.definitions

    with pytest.raises(LabelValidationError):
        run(engines.mutations.rename_field("c", "b"))

    assert engines.schema.definitions == definitions
    assert keys(engines.schema.definitions["b_object"].fields) == ["X"]
    assert engines.store.state.label_error["name"] == "Label validation error"
    assert storage.written == []


def test_unknown_table_member_is_recorded_as_label_error(seeded):
    with pytest.raises(UnknownFieldError):
        run(seeded.mutations.rename_table_field("grid", "NOPE", "X", FieldLocation.FIELD))
    assert seeded.store.state.label_error["name"] == "Invariant violation"
    assert "grid/NOPE" in seeded.store.state.label_error["message"]

    run(seeded.mutations.add_field(PrimitiveField(field_key="Vendor", field_type=FieldType.STRING)))
    assert seeded.store.state.label_error is None
    with pytest.raises(UnknownFieldError):
        run(seeded.mutations.delete_table_field("items", "NOPE", FieldLocation.DEFINITION))
    assert seeded.store.state.label_error["name"] == "Invariant violation"


def test_failed_label_write_restores_schema_and_labels_on_disk(seeded, storage):
    storage.fail_paths = {"doc2.pdf.labels.json"}

    with pytest.raises(PersistenceError):
        run(seeded.mutations.rename_field("Name", "Full Name"))

    on_disk_fields = keys(run(seeded.assets.read_fields()).fields)
    assert "Name" in on_disk_fields and "Full Name" not in on_disk_fields
    on_disk = all_labels(seeded)
    assert "Name" in label_names(on_disk["doc1.pdf"])
    assert "Name" in label_names(on_disk["doc2.pdf"])
    assert not any(l.label == "Full Name" for labels in on_disk.values() for l in labels)
    assert_consistent(seeded, on_disk)
    assert "Name" in keys(seeded.schema.fields)
