import logging
from typing import Dict, List, Optional, Sequence

from labeler.core.errors import (
    CrossPageLabelError,
    InvariantViolation,
    LabelingError,
    PersistenceError,
)
from labeler.models.features import FeatureCategory
from labeler.models.labels import Label, LabelType, LabelValueCandidate
from labeler.models.schema import FieldType
from labeler.services.assets import AssetService
from labeler.services.schema_store import SchemaStore
from labeler.services.state import StateStore, with_labeling_status
from labeler.utils.labels import (
    boxes_key,
    dedupe_candidates,
    get_field_key_from_label,
    make_label_value,
    resolve_field_type,
    sort_label_values,
    validate_assignment,
)

logger = logging.getLogger(__name__)

REPLACING_FIELD_TYPES = (FieldType.SIGNATURE, FieldType.SELECTION_MARK)


class LabelAssignmentEngine:
    """
    Turns the current selection's candidates into a persisted, typed, ordered label.

    Every mutation follows the same discipline: validate, compute the new label
    list for the document, write it, and only then publish it to the state store.
    """

    def __init__(self, store: StateStore, schema: SchemaStore, assets: AssetService):
        self.store = store
        self.schema = schema
        self.assets = assets

    # ---------------------------
    # helpers
    # ---------------------------

    def _document_name(self, document_name: Optional[str]) -> str:
        name = document_name or self.store.state.current_document_name
        if not name:
            raise InvariantViolation("No document is open.")
        return name

    def labels_of(self, document_name: str) -> List[Label]:
        return list(self.store.state.labels.get(document_name, []))

    def _record_error(self, error: LabelingError) -> None:
        logger.warning("%s: %s", error.name, error.message)
        self.store.update(label_error=error.to_dict())

    async def _commit(self, document_name: str, labels: List[Label], **extra) -> List[Label]:
        try:
            await self.assets.write_labels(document_name, labels)
        except PersistenceError as e:
            logger.error("Failed to persist labels of %s: %s", document_name, e.message)
            self._record_error(e)
            raise
        state = self.store.state
        all_labels = dict(state.labels)
        all_labels[document_name] = labels
        self.store.update(
            labels=all_labels,
            documents=with_labeling_status(state.documents, document_name, bool(labels)),
            label_error=None,
            **extra,
        )
        return labels

    def clear_label_error(self) -> None:
        self.store.update(label_error=None)

    def set_label_value_candidates(self, candidates: Sequence[LabelValueCandidate]) -> None:
        self.store.update(
            label_value_candidates=list(candidates),
            hide_inline_label_menu=not candidates,
        )

    # ---------------------------
    # assignment
    # ---------------------------

    async def assign_label(
        self,
        label_name: str,
        document_name: Optional[str] = None,
        candidates: Optional[Sequence[LabelValueCandidate]] = None,
    ) -> List[Label]:
        """Assign candidates (the current selection by default) to the field path `label_name`."""
        doc = self._document_name(document_name)
        if candidates is None:
            candidates = self.store.state.label_value_candidates
        if not candidates:
            return self.labels_of(doc)

        candidates = dedupe_candidates(candidates)
        labels = self.labels_of(doc)
        try:
            field_type = resolve_field_type(label_name, self.schema.fields, self.schema.definitions)
            validate_assignment(candidates, field_type)
            existing = next((l for l in labels if l.label == label_name), None)
            if existing is not None and existing.value:
                anchored_page = existing.value[0].page
                if any(c.page != anchored_page for c in candidates):
                    raise CrossPageLabelError()
        except LabelingError as e:
            self._record_error(e)
            raise

        # re-labeling a region moves it: drop it from wherever it sits on that page
        candidate_keys = {(c.page, boxes_key(c.bounding_boxes)) for c in candidates}
        cleaned: List[Label] = []
        for label in labels:
            values = [v for v in label.value if (v.page, boxes_key(v.bounding_boxes)) not in candidate_keys]
            cleaned.append(label if len(values) == len(label.value) else label.model_copy(update={"value": values}))

        is_single_draw_region = len(candidates) == 1 and candidates[0].category == FeatureCategory.DRAWN_REGION
        new_values = [make_label_value(c) for c in candidates]
        orders = self.store.state.orders.get(doc)

        index = next((i for i, l in enumerate(cleaned) if l.label == label_name), None)
        if index is None:
            if is_single_draw_region:
                cleaned.append(Label(label=label_name, value=new_values, label_type=LabelType.REGION))
            else:
                cleaned.append(Label(label=label_name, value=sort_label_values(new_values, orders)))
        else:
            current = cleaned[index]
            if is_single_draw_region:
                merged = current.model_copy(update={"value": new_values, "label_type": LabelType.REGION})
            elif field_type in REPLACING_FIELD_TYPES:
                merged = current.model_copy(update={"value": sort_label_values(new_values, orders), "label_type": None})
            elif current.label_type == LabelType.REGION:
                merged = current.model_copy(update={"value": sort_label_values(new_values, orders), "label_type": None})
            else:
                merged = current.model_copy(
                    update={"value": sort_label_values(list(current.value) + new_values, orders)}
                )
            cleaned[index] = merged

        result = [l for l in cleaned if l.value]
        logger.info("Assigned %d region(s) to '%s' in %s", len(candidates), label_name, doc)
        return await self._commit(doc, result, label_value_candidates=[], hide_inline_label_menu=True)

    async def update_label(
        self,
        label_name: str,
        old_candidate: LabelValueCandidate,
        new_candidate: LabelValueCandidate,
        document_name: Optional[str] = None,
    ) -> List[Label]:
        """Move one value of a label to new geometry, e.g. after a vertex edit."""
        doc = self._document_name(document_name)
        old_key = boxes_key(old_candidate.bounding_boxes)
        labels: List[Label] = []
        for label in self.labels_of(doc):
            if label.label == label_name:
                values = [
                    v.model_copy(update={"bounding_boxes": new_candidate.bounding_boxes, "page": new_candidate.page})
                    if v.page == old_candidate.page and boxes_key(v.bounding_boxes) == old_key
                    else v
                    for v in label.value
                ]
                label = label.model_copy(update={"value": values})
            labels.append(label)
        return await self._commit(doc, labels)

    async def delete_label_by_field(self, field_key: str, document_name: Optional[str] = None) -> List[Label]:
        doc = self._document_name(document_name)
        labels = [l for l in self.labels_of(doc) if get_field_key_from_label(l) != field_key]
        return await self._commit(doc, labels)

    async def delete_label_by_label(self, label_name: str, document_name: Optional[str] = None) -> List[Label]:
        doc = self._document_name(document_name)
        labels = [l for l in self.labels_of(doc) if l.label != label_name]
        return await self._commit(doc, labels)

    async def update_table_label(
        self,
        table_field_key: str,
        new_labels: Sequence[Label],
        document_name: Optional[str] = None,
    ) -> List[Label]:
        """Replace every cell label of a table field with `new_labels`."""
        doc = self._document_name(document_name)
        try:
            self.schema.require_field(table_field_key)
            for label in new_labels:
                if get_field_key_from_label(label) != table_field_key:
                    raise InvariantViolation(f"Label '{label.label}' does not belong to table '{table_field_key}'.")
                resolve_field_type(label.label, self.schema.fields, self.schema.definitions)
        except LabelingError as e:
            self._record_error(e)
            raise
        labels = [l for l in self.labels_of(doc) if get_field_key_from_label(l) != table_field_key]
        labels.extend(l for l in new_labels if l.value)
        return await self._commit(doc, labels)

