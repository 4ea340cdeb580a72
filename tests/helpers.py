from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence, Set

from labeler.core.errors import StorageError
from labeler.models.document import Document
from labeler.models.features import FeatureCategory
from labeler.models.labels import Label, LabelValue, LabelValueCandidate
from labeler.models.schema import (
    ArrayField,
    Definition,
    FieldsFile,
    FieldType,
    ObjectField,
    PrimitiveField,
    TableChildField,
    VisualizationHint,
)
from labeler.services.assets import AssetService
from labeler.services.label_assignment import LabelAssignmentEngine
from labeler.services.schema_mutation import SchemaMutationEngine
from labeler.services.schema_store import SchemaStore
from labeler.services.state import StateStore
from labeler.services.storage import STORAGE_ERROR_CODE, LocalFileStorage


class FlakyStorage(LocalFileStorage):
    """Local storage that can be told to reject every write, or writes to chosen paths."""

    def __init__(self, root):
        super().__init__(root)
        self.fail_writes = False
        self.fail_paths: Set[str] = set()
        self.written: List[str] = []

    async def write_text(self, path: str, content: str) -> None:
        if self.fail_writes or path in self.fail_paths:
            raise StorageError(STORAGE_ERROR_CODE, f"rejected write of {path}")
        self.written.append(path)
        await super().write_text(path, content)

    async def delete_file(self, path: str, ignore_not_found: bool = False) -> None:
        if self.fail_writes or path in self.fail_paths:
            raise StorageError(STORAGE_ERROR_CODE, f"rejected delete of {path}")
        await super().delete_file(path, ignore_not_found)


def box(x: float, y: float, w: float = 0.1, h: float = 0.05) -> List[float]:
    return [x, y, x + w, y, x + w, y + h, x, y + h]


def candidate(
    x: float,
    y: float,
    page: int = 1,
    category: FeatureCategory = FeatureCategory.TEXT,
    text: str = "word",
) -> LabelValueCandidate:
    return LabelValueCandidate(bounding_boxes=[box(x, y)], page=page, text=text, category=category)


def label(name: str, *boxes: Sequence[float], page: int = 1) -> Label:
    return Label(label=name, value=[LabelValue(page=page, text="t", bounding_boxes=[list(b)]) for b in boxes])


def sample_schema() -> FieldsFile:
    return FieldsFile(
        fields=[
            PrimitiveField(field_key="Name", field_type=FieldType.STRING),
            PrimitiveField(field_key="Total", field_type=FieldType.NUMBER),
            PrimitiveField(field_key="Checked", field_type=FieldType.SELECTION_MARK),
            PrimitiveField(field_key="Sign", field_type=FieldType.SIGNATURE),
            ArrayField(field_key="items", item_type="items_object"),
            ObjectField(
                field_key="grid",
                fields=[
                    TableChildField(field_key="ROW1", field_type="grid_object"),
                    TableChildField(field_key="ROW2", field_type="grid_object"),
                ],
                visualization_hint=VisualizationHint.VERTICAL,
            ),
        ],
        definitions={
            "items_object": Definition(
                field_key="items_object",
                fields=[
                    PrimitiveField(field_key="COLUMN1", field_type=FieldType.STRING),
                    PrimitiveField(field_key="COLUMN2", field_type=FieldType.STRING),
                ],
            ),
            "grid_object": Definition(
                field_key="grid_object",
                fields=[
                    PrimitiveField(field_key="COLUMN1", field_type=FieldType.STRING),
                    PrimitiveField(field_key="COLUMN2", field_type=FieldType.DATE),
                ],
            ),
        },
    )


def build_engines(
    storage,
    schema: Optional[FieldsFile] = None,
    documents: Sequence[str] = ("doc1.pdf", "doc2.pdf"),
    labels: Optional[Dict[str, List[Label]]] = None,
) -> SimpleNamespace:
    store = StateStore()
    schema_store = SchemaStore(store)
    schema_store.load(schema if schema is not None else sample_schema())
    store.update(
        documents=[Document(name=n) for n in documents],
        current_document_name=documents[0] if documents else None,
        labels=dict(labels or {}),
    )
    assets = AssetService(storage)
    return SimpleNamespace(
        store=store,
        schema=schema_store,
        assets=assets,
        labels=LabelAssignmentEngine(store, schema_store, assets),
        mutations=SchemaMutationEngine(store, schema_store, assets),
    )
