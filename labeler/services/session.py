import logging
from typing import Dict, List, Optional, Tuple

from labeler.core.config import Settings, settings as default_settings
from labeler.core.errors import InvariantViolation, PersistenceError
from labeler.models.analysis import AnalyzeResult
from labeler.models.document import Canvas, Document, DocumentStates, DocumentStatus
from labeler.models.features import FeatureCategory, Layer
from labeler.models.labels import Label, LabelType
from labeler.models.schema import FieldType, PrimitiveField
from labeler.services.assets import AssetService
from labeler.services.document_loader import DocumentLoaderFactory, get_document_type
from labeler.services.feature_store import (
    FeatureStore,
    create_feature_from_bounding_box,
    create_feature_from_polygon,
)
from labeler.services.interaction import (
    Commit,
    GeometryChange,
    GeometryChanged,
    InteractionStateMachine,
    MenuClosed,
    RegionDeleted,
    SelectionFinished,
    Viewport,
)
from labeler.services.label_assignment import LabelAssignmentEngine
from labeler.services.schema_mutation import SchemaMutationEngine
from labeler.services.schema_store import SchemaStore
from labeler.services.selection import InlineMenu, SelectionSet, inline_menu_items
from labeler.services.state import LabelingState, StateStore
from labeler.services.storage import (
    STORAGE_ERROR_CODE,
    LocalFileStorage,
    QueuedStorage,
    StorageProvider,
)
from labeler.utils.labels import build_region_orders, encode_label_string, get_field_key_from_label

logger = logging.getLogger(__name__)


class LabelingSession:
    """
    One user's labeling workspace over a project folder.

    Owns the state store and both engines, keeps the FeatureStore in sync with
    the open page (analysis regions plus saved labels), and routes interaction
    commits into label updates.
    """

    def __init__(
        self,
        storage: StorageProvider,
        settings: Optional[Settings] = None,
        viewport_size: Tuple[float, float] = (1200.0, 900.0),
    ):
        self.settings = settings or default_settings
        self.storage = storage
        self.store = StateStore()
        self.schema = SchemaStore(self.store)
        self.assets = AssetService(storage, self.settings)
        self.labels = LabelAssignmentEngine(self.store, self.schema, self.assets)
        self.mutations = SchemaMutationEngine(self.store, self.schema, self.assets)
        self.loaders = DocumentLoaderFactory(storage, self.settings)

        self.features = FeatureStore()
        self.selection = SelectionSet()
        self.viewport = Viewport(viewport_size[0], viewport_size[1], 1.0, 1.0)
        self.machine = InteractionStateMachine(self.features, self.selection, self.viewport, settings=self.settings)
        self.canvas: Optional[Canvas] = None
        self.analyze_results: Dict[str, AnalyzeResult] = {}

        self._geometry_changes: List[GeometryChange] = []
        self._drawn_labels: Optional[List[Label]] = None
        self._drawn_colors: Optional[Dict[str, str]] = None

        self.machine.subscribe(self._on_commit)
        self.store.subscribe(self._on_state)

    @property
    def state(self) -> LabelingState:
        return self.store.state

    @property
    def current_document(self) -> Optional[Document]:
        return self.store.state.current_document

    @property
    def current_page(self) -> int:
        return self.machine.page

    # ---------------------------
    # workspace and documents
    # ---------------------------

    async def load_workspace(self) -> List[Document]:
        if not await self.storage.is_valid_connection():
            raise PersistenceError(STORAGE_ERROR_CODE, "The project folder is not reachable.")
        names = await self.assets.list_documents()
        documents: List[Document] = []
        for name in names:
            analyzed = await self.storage.is_file_exists(self.assets.ocr_file_name(name))
            labeled = await self.storage.is_file_exists(self.assets.label_file_name(name))
            documents.append(Document(
                name=name,
                type=get_document_type(name),
                url=name,
                states=DocumentStates(
                    loading_status=DocumentStatus.LOADING,
                    analyzing_status=DocumentStatus.ANALYZED if analyzed else None,
                    labeling_status=DocumentStatus.LABELED if labeled else None,
                ),
            ))
        fields_file = await self.assets.read_fields()
        if fields_file is not None:
            self.schema.load(fields_file)
        self.store.update(documents=documents)
        logger.info("Workspace has %d documents", len(documents))
        return documents

    def _document(self, name: str) -> Document:
        doc = next((d for d in self.store.state.documents if d.name == name), None)
        if doc is None:
            raise InvariantViolation(f"Unknown document: {name}")
        return doc

    async def load_document_meta(self, name: str) -> Document:
        self._document(name)
        meta = await self.loaders.get(name).load_document_meta()
        documents = [
            d.model_copy(update={
                "thumbnail": meta.thumbnail,
                "num_pages": meta.num_pages,
                "states": d.states.model_copy(update={"loading_status": DocumentStatus.LOADED}),
            }) if d.name == name else d
            for d in self.store.state.documents
        ]
        self.store.update(documents=documents)
        return self._document(name)

    async def ensure_document_labels(self, name: str) -> List[Label]:
        """Load a document's labels into state unless they are already there."""
        state = self.store.state
        if name not in state.labels:
            labels = dict(state.labels)
            labels[name] = await self.assets.read_labels(name)
            self.store.update(labels=labels)
        return list(self.store.state.labels[name])

    async def open_document(self, name: str, page: int = 1) -> None:
        self._document(name)
        await self.ensure_document_labels(name)
        analyze_result = await self.assets.read_analyze_result(name)
        if analyze_result is not None:
            self.analyze_results[name] = analyze_result
            orders = dict(self.store.state.orders)
            orders[name] = build_region_orders(analyze_result)
            self.store.update(orders=orders)
        self.store.update(current_document_name=name, label_value_candidates=[], hide_inline_label_menu=True)
        await self.set_current_page(page)

    async def set_current_page(self, page: int, canvas: Optional[Canvas] = None) -> None:
        doc = self.current_document
        if doc is None:
            raise InvariantViolation("No document is open.")
        if canvas is None:
            canvas = await self.loaders.get(doc.name).load_document_page(page)
        self.canvas = canvas
        self.machine.set_page(page)
        analyzed = self.analyze_results.get(doc.name)
        analyzed_page = analyzed.page(page) if analyzed else None
        angle = canvas.angle or (analyzed_page.angle if analyzed_page else 0.0)
        self.viewport.set_image(canvas.width, canvas.height, angle)

        documents = [
            d.model_copy(update={"current_page": page}) if d.name == doc.name else d
            for d in self.store.state.documents
        ]
        self.store.update(documents=documents, label_value_candidates=[], hide_inline_label_menu=True)
        self.features.clear_all()
        self._draw_analysis(page)
        self.draw_labels()

    # ---------------------------
    # drawing features
    # ---------------------------

    def _draw_analysis(self, page: int) -> None:
        doc = self.current_document
        analyzed = self.analyze_results.get(doc.name) if doc else None
        analyzed_page = analyzed.page(page) if analyzed else None
        if analyzed_page is None or self.canvas is None:
            return
        size = (analyzed_page.width, analyzed_page.height, self.canvas.width, self.canvas.height)
        for word in analyzed_page.words:
            if word.polygon:
                self.features.add(Layer.TEXT, create_feature_from_polygon(
                    FeatureCategory.TEXT, word.polygon, page, *size, text=word.content,
                ))
        for mark in analyzed_page.selection_marks:
            if mark.polygon:
                self.features.add(Layer.CHECKBOX, create_feature_from_polygon(
                    FeatureCategory.CHECKBOX, mark.polygon, page, *size, text=mark.state, state=mark.state,
                ))

    def draw_labels(self) -> None:
        """Redraw the label layers of the current page from the saved labels."""
        self.features.clear(Layer.LABEL)
        self.features.clear(Layer.DRAWN_REGION_LABEL)
        doc = self.current_document
        state = self.store.state
        labels = state.labels.get(doc.name, []) if doc else []
        self._drawn_labels = labels
        self._drawn_colors = state.color_for_fields
        if self.canvas is None:
            return
        page = self.machine.page
        for label in labels:
            color = state.color_for_fields.get(get_field_key_from_label(label))
            for value in label.value:
                if value.page != page:
                    continue
                for bbox in value.bounding_boxes:
                    if label.label_type == LabelType.REGION:
                        feature = create_feature_from_bounding_box(
                            FeatureCategory.DRAWN_REGION, bbox, page, self.canvas.width, self.canvas.height,
                            text=value.text, assigned_label=label.label, color=color,
                        )
                        # a committed region replaces its unassigned drawn twin
                        self.features.remove(Layer.DRAWN_REGION, feature.id)
                        self.features.add(Layer.DRAWN_REGION_LABEL, feature)
                    else:
                        self.features.add(Layer.LABEL, create_feature_from_bounding_box(
                            FeatureCategory.LABEL, bbox, page, self.canvas.width, self.canvas.height,
                            text=value.text, assigned_label=label.label, color=color,
                        ))
        self.features.set_hovered_label(self.features.hovered_label)

    def _on_state(self, state: LabelingState) -> None:
        doc = state.current_document
        if doc is None or self._drawn_labels is None:
            return
        labels = state.labels.get(doc.name, [])
        labels_changed = labels is not self._drawn_labels
        if labels_changed or state.color_for_fields is not self._drawn_colors:
            if labels_changed:
                self.selection.clear()
            self.draw_labels()

    # ---------------------------
    # interaction
    # ---------------------------

    def _on_commit(self, commit: Commit) -> None:
        if isinstance(commit, SelectionFinished):
            self.labels.set_label_value_candidates(commit.candidates)
        elif isinstance(commit, RegionDeleted):
            self.labels.set_label_value_candidates(self.selection.candidates())
        elif isinstance(commit, GeometryChanged):
            self._geometry_changes.extend(commit.changes)
        elif isinstance(commit, MenuClosed):
            self.store.update(hide_inline_label_menu=True)

    async def pointer_up(self, pixel: Tuple[float, float]) -> None:
        self.machine.pointer_up(pixel)
        await self.flush_geometry_changes()

    async def flush_geometry_changes(self) -> None:
        """Re-label values whose regions were moved by vertex edits."""
        changes, self._geometry_changes = self._geometry_changes, []
        for change in changes:
            if change.label_name:
                await self.labels.update_label(change.label_name, change.old_candidate, change.new_candidate)

    def inline_menu(self, search_text: str = "") -> InlineMenu:
        return inline_menu_items(self.schema.fields, self.selection.enabled_field_types(), search_text)

    async def assign_label(self, label_name: str) -> List[Label]:
        return await self.labels.assign_label(label_name)

    async def create_field_and_assign(self, field_key: str, field_type: FieldType = FieldType.STRING) -> List[Label]:
        await self.mutations.add_field(PrimitiveField(field_key=field_key, field_type=field_type))
        return await self.labels.assign_label(encode_label_string(field_key))

    def hover_label(self, label_name: Optional[str]) -> None:
        self.features.set_hovered_label(label_name)

    def toggle_layer(self, layer: Layer, visible: Optional[bool] = None) -> bool:
        return self.features.toggle_visibility(layer, visible)


def create_session(settings: Optional[Settings] = None) -> LabelingSession:
    settings = settings or default_settings
    storage = QueuedStorage(LocalFileStorage(settings.storage_root))
    return LabelingSession(storage, settings)
