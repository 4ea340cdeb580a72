import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from labeler.core.errors import (
    LabelingError,
    LabelValidationError,
    PersistenceError,
    UnknownFieldError,
)
from labeler.models.labels import Label
from labeler.models.schema import (
    ArrayField,
    Definition,
    FieldFormat,
    FieldLocation,
    FieldType,
    HeaderType,
    ObjectField,
    PRIMITIVE_FIELD_TYPES,
    PrimitiveField,
    TableChildField,
    TableType,
    VisualizationHint,
)
from labeler.services.assets import AssetService
from labeler.services.schema_store import SchemaStore, table_definition_names
from labeler.services.state import StateStore, with_labeling_status
from labeler.utils.labels import decode_label_string, replace_label_segment

logger = logging.getLogger(__name__)

LabelsByDocument = Dict[str, List[Label]]


def object_name_for(field_key: str) -> str:
    return f"{field_key}_object"


def _segment(label: Label, index: int) -> Optional[str]:
    segments = label.label.split("/")
    return decode_label_string(segments[index]) if len(segments) > index else None


def _belongs_to(label: Label, field_key: str) -> bool:
    return _segment(label, 0) == field_key


def rewrite_labels(
    labels_by_document: LabelsByDocument,
    rewrite: Callable[[Label], Optional[Label]],
) -> LabelsByDocument:
    """
    Apply `rewrite` to every label of every document. Returning None drops the label.
    Only documents whose label list actually changed are returned.
    """
    changed: LabelsByDocument = {}
    for name, labels in labels_by_document.items():
        new_labels: List[Label] = []
        dirty = False
        for label in labels:
            new_label = rewrite(label)
            if new_label is None:
                dirty = True
                continue
            if new_label is not label:
                dirty = True
            new_labels.append(new_label)
        if dirty:
            changed[name] = new_labels
    return changed


class SchemaMutationEngine:
    """
    Schema edits plus their cascade into every document's labels.

    Rename and delete run in two phases: all label sets are fetched and rewritten
    in memory first, then every changed label file is written, followed by the
    schema. Only after both succeed is the new state published; a failed write
    restores the previous files.
    """

    def __init__(self, store: StateStore, schema: SchemaStore, assets: AssetService):
        self.store = store
        self.schema = schema
        self.assets = assets

    # ---------------------------
    # commit helpers
    # ---------------------------

    def _record_error(self, error: LabelingError) -> None:
        logger.warning("%s: %s", error.name, error.message)
        self.store.update(label_error=error.to_dict())

    def _reject(self, message: str) -> None:
        error = LabelValidationError(message)
        self._record_error(error)
        raise error

    def _require_field(self, field_key: str) -> Any:
        try:
            return self.schema.require_field(field_key)
        except UnknownFieldError as e:
            self._record_error(e)
            raise

    def _require_table(self, field_key: str) -> Any:
        field = self._require_field(field_key)
        if not isinstance(field, (ArrayField, ObjectField)):
            self._reject(f"Field '{field_key}' is not a table.")
        return field

    def _missing(self, key: str) -> None:
        error = UnknownFieldError(key)
        self._record_error(error)
        raise error

    def _require_definition(self, name: str) -> Definition:
        definition = self.schema.get_definition(name)
        if definition is None:
            self._missing(name)
        return definition

    async def _load_all_labels(self) -> LabelsByDocument:
        state = self.store.state
        names = [d.name for d in state.documents]
        names.extend(await self.assets.list_documents())
        return await self.assets.get_all_document_labels(state.labels, names)

    async def _roll_back(
        self,
        labels_by_document: Optional[LabelsByDocument],
        previous_labels: Optional[LabelsByDocument],
    ) -> None:
        restores = [self.assets.update_fields(self.schema.fields, self.schema.definitions)]
        if labels_by_document and previous_labels:
            restores.append(self.assets.update_document_labels(
                {name: previous_labels.get(name, []) for name in labels_by_document}
            ))
        for result in await asyncio.gather(*restores, return_exceptions=True):
            if isinstance(result, Exception):
                logger.error("Could not restore previous schema files: %s", result)

    async def _commit(
        self,
        fields: Sequence[Any],
        definitions: Dict[str, Definition],
        colors: Optional[Dict[str, str]] = None,
        labels_by_document: Optional[LabelsByDocument] = None,
        previous_labels: Optional[LabelsByDocument] = None,
    ) -> None:
        # labels land before the schema; a failure puts back what was there
        try:
            if labels_by_document:
                await self.assets.update_document_labels(labels_by_document)
            await self.assets.update_fields(fields, definitions)
        except PersistenceError as e:
            logger.error("Schema change was not persisted: %s", e.message)
            await self._roll_back(labels_by_document, previous_labels)
            self._record_error(e)
            raise

        state = self.store.state
        changes: Dict[str, Any] = {"fields": list(fields), "definitions": dict(definitions), "label_error": None}
        if colors is not None:
            changes["color_for_fields"] = colors
        if labels_by_document:
            labels = dict(state.labels)
            documents = state.documents
            for name, doc_labels in labels_by_document.items():
                labels[name] = doc_labels
                documents = with_labeling_status(documents, name, bool(doc_labels))
            changes["labels"] = labels
            changes["documents"] = documents
        self.store.update(**changes)

    # ---------------------------
    # flat fields
    # ---------------------------

    async def add_field(self, field: Any) -> None:
        if self.schema.has_field(field.field_key):
            self._reject(f"The field '{field.field_key}' already exists.")
        fields = list(self.schema.fields) + [field]
        await self._commit(fields, self.schema.definitions, colors=self.schema.with_color(field.field_key))
        logger.info("Added field '%s' (%s)", field.field_key, field.field_type)

    async def update_fields_order(self, fields: Sequence[Any]) -> None:
        current = sorted(f.field_key for f in self.schema.fields)
        if sorted(f.field_key for f in fields) != current:
            self._reject("Reordered fields must contain exactly the existing fields.")
        await self._commit(list(fields), self.schema.definitions)

    async def switch_field_sub_type(self, field_key: str, new_type: FieldType) -> None:
        field = self._require_field(field_key)
        if not isinstance(field, PrimitiveField) or new_type not in PRIMITIVE_FIELD_TYPES:
            self._reject(f"Field '{field_key}' can only switch between primitive types.")
        if field.field_type == new_type:
            return
        fields = [
            f.model_copy(update={"field_type": FieldType(new_type)}) if f.field_key == field_key else f
            for f in self.schema.fields
        ]
        await self._commit(fields, self.schema.definitions)
        logger.info("Switched field '%s' to %s", field_key, new_type)

    async def rename_field(self, field_key: str, new_name: str) -> None:
        field = self._require_field(field_key)
        if new_name == field_key:
            return
        if self.schema.has_field(new_name):
            self._reject(f"The field '{new_name}' already exists.")

        definitions = dict(self.schema.definitions)
        if isinstance(field, (ArrayField, ObjectField)):
            new_object_name = object_name_for(new_name)
            old_names = table_definition_names(field)
            if new_object_name in definitions and old_names[:1] != [new_object_name]:
                self._reject(f"The definition '{new_object_name}' already exists.")
            still_used = set()
            for other in self.schema.fields:
                if other.field_key != field_key:
                    still_used.update(table_definition_names(other))
            if isinstance(field, ArrayField):
                renamed = field.model_copy(update={"field_key": new_name, "item_type": new_object_name})
            else:
                children = [c.model_copy(update={"field_type": new_object_name}) for c in field.fields]
                renamed = field.model_copy(update={"field_key": new_name, "fields": children})
            if old_names:
                old_definition = self._require_definition(old_names[0])
                # definitions shared with other tables stay behind for them
                for name in old_names:
                    if name not in still_used:
                        definitions.pop(name, None)
                definitions[new_object_name] = old_definition.model_copy(update={"field_key": new_object_name})
        else:
            renamed = field.model_copy(update={"field_key": new_name})
        fields = [renamed if f.field_key == field_key else f for f in self.schema.fields]

        all_labels = await self._load_all_labels()
        changed = rewrite_labels(
            all_labels,
            lambda l: replace_label_segment(l, 0, new_name) if _belongs_to(l, field_key) else l,
        )
        await self._commit(
            fields,
            definitions,
            colors=self.schema.with_renamed_color(field_key, new_name),
            labels_by_document=changed,
            previous_labels=all_labels,
        )
        logger.info("Renamed field '%s' to '%s' (%d documents rewritten)", field_key, new_name, len(changed))

    async def delete_field(self, field_key: str) -> None:
        field = self._require_field(field_key)
        fields = [f for f in self.schema.fields if f.field_key != field_key]

        still_used = set()
        for other in fields:
            still_used.update(table_definition_names(other))
        definitions = {
            name: d for name, d in self.schema.definitions.items()
            if name not in table_definition_names(field) or name in still_used
        }

        all_labels = await self._load_all_labels()
        changed = rewrite_labels(all_labels, lambda l: None if _belongs_to(l, field_key) else l)
        await self._commit(
            fields,
            definitions,
            colors=self.schema.without_color(field_key),
            labels_by_document=changed,
            previous_labels=all_labels,
        )
        logger.info("Deleted field '%s' (%d documents rewritten)", field_key, len(changed))

    # ---------------------------
    # tables
    # ---------------------------

    async def add_table_field(self, field_key: str, table_type: TableType, header_type: HeaderType) -> None:
        if self.schema.has_field(field_key):
            self._reject(f"The field '{field_key}' already exists.")
        object_name = object_name_for(field_key)
        if object_name in self.schema.definitions:
            self._reject(f"The definition '{object_name}' already exists.")

        def strings(*keys: str) -> List[PrimitiveField]:
            return [PrimitiveField(field_key=k, field_type=FieldType.STRING) for k in keys]

        if table_type == TableType.DYNAMIC:
            table = ArrayField(field_key=field_key, item_type=object_name)
            definition_fields = strings("COLUMN1", "COLUMN2")
        elif header_type == HeaderType.COLUMN:
            table = ObjectField(
                field_key=field_key,
                fields=[TableChildField(field_key=k, field_type=object_name) for k in ("ROW1", "ROW2")],
                visualization_hint=VisualizationHint.VERTICAL,
            )
            definition_fields = strings("COLUMN1", "COLUMN2")
        else:
            table = ObjectField(
                field_key=field_key,
                fields=[TableChildField(field_key=k, field_type=object_name) for k in ("COLUMN1", "COLUMN2")],
                visualization_hint=VisualizationHint.HORIZONTAL,
            )
            definition_fields = strings("ROW1", "ROW2")

        definitions = dict(self.schema.definitions)
        definitions[object_name] = Definition(
            field_key=object_name,
            field_type=FieldType.OBJECT,
            field_format=FieldFormat.NOT_SPECIFIED,
            fields=definition_fields,
        )
        fields = list(self.schema.fields) + [table]
        await self._commit(fields, definitions, colors=self.schema.with_color(field_key))
        logger.info("Added %s table '%s' (%s headers)", TableType(table_type).value, field_key, HeaderType(header_type).value)

    async def switch_table_field_sub_type(self, table_field_key: str, header_key: str, new_type: FieldType) -> None:
        """Switch the type of every Definition field named `header_key` used by the table."""
        table = self._require_table(table_field_key)
        if new_type not in PRIMITIVE_FIELD_TYPES:
            self._reject(f"Table cells can't be of type '{new_type}'.")
        names = table_definition_names(table)
        current = [
            f for name in names for f in self._require_definition(name).fields if f.field_key == header_key
        ]
        if not current:
            self._missing(f"{table_field_key}/{header_key}")
        if all(f.field_type == new_type for f in current):
            return

        definitions = dict(self.schema.definitions)
        for name in names:
            definition = definitions[name]
            definitions[name] = definition.model_copy(update={"fields": [
                f.model_copy(update={"field_type": FieldType(new_type)}) if f.field_key == header_key else f
                for f in definition.fields
            ]})
        await self._commit(self.schema.fields, definitions)

    async def insert_table_field(
        self,
        table_field_key: str,
        field_key: str,
        index: int,
        location: FieldLocation,
    ) -> None:
        """Insert a row/column at `index`, either as a table child or into the table's Definition."""
        table = self._require_table(table_field_key)
        names = table_definition_names(table)
        if not names:
            self._missing(table_field_key)
        object_name = names[0]
        fields = list(self.schema.fields)
        definitions = dict(self.schema.definitions)

        if location == FieldLocation.FIELD:
            if not isinstance(table, ObjectField):
                self._reject("Rows of a dynamic table are not part of the schema.")
            if any(c.field_key == field_key for c in table.fields):
                self._reject(f"The field '{field_key}' already exists in '{table_field_key}'.")
            children = list(table.fields)
            children.insert(index, TableChildField(field_key=field_key, field_type=object_name))
            updated = table.model_copy(update={"fields": children})
            fields = [updated if f.field_key == table_field_key else f for f in fields]
        else:
            definition = self._require_definition(object_name)
            if any(f.field_key == field_key for f in definition.fields):
                self._reject(f"The field '{field_key}' already exists in '{table_field_key}'.")
            cells = list(definition.fields)
            cells.insert(index, PrimitiveField(field_key=field_key, field_type=FieldType.STRING))
            definitions[object_name] = definition.model_copy(update={"fields": cells})

        await self._commit(fields, definitions)

    async def rename_table_field(
        self,
        table_field_key: str,
        field_key: str,
        new_name: str,
        location: FieldLocation,
    ) -> None:
        table = self._require_table(table_field_key)
        if new_name == field_key:
            return
        fields = list(self.schema.fields)
        definitions = dict(self.schema.definitions)

        if location == FieldLocation.FIELD:
            if not isinstance(table, ObjectField) or not any(c.field_key == field_key for c in table.fields):
                self._missing(f"{table_field_key}/{field_key}")
            if any(c.field_key == new_name for c in table.fields):
                self._reject(f"The field '{new_name}' already exists in '{table_field_key}'.")
            children = [
                c.model_copy(update={"field_key": new_name}) if c.field_key == field_key else c
                for c in table.fields
            ]
            updated = table.model_copy(update={"fields": children})
            fields = [updated if f.field_key == table_field_key else f for f in fields]
            segment_index = 1
        else:
            names = table_definition_names(table)
            if not any(f.field_key == field_key for n in names for f in self._require_definition(n).fields):
                self._missing(f"{table_field_key}/{field_key}")
            if any(f.field_key == new_name for n in names for f in definitions[n].fields):
                self._reject(f"The field '{new_name}' already exists in '{table_field_key}'.")
            for name in names:
                definition = definitions[name]
                definitions[name] = definition.model_copy(update={"fields": [
                    f.model_copy(update={"field_key": new_name}) if f.field_key == field_key else f
                    for f in definition.fields
                ]})
            segment_index = 2

        def rename(label: Label) -> Label:
            if _belongs_to(label, table_field_key) and _segment(label, segment_index) == field_key:
                return replace_label_segment(label, segment_index, new_name)
            return label

        all_labels = await self._load_all_labels()
        changed = rewrite_labels(all_labels, rename)
        await self._commit(fields, definitions, labels_by_document=changed, previous_labels=all_labels)
        logger.info("Renamed '%s/%s' to '%s'", table_field_key, field_key, new_name)

    async def delete_table_field(self, table_field_key: str, field_key: str, location: FieldLocation) -> None:
        table = self._require_table(table_field_key)
        fields = list(self.schema.fields)
        definitions = dict(self.schema.definitions)

        if location == FieldLocation.FIELD:
            if not isinstance(table, ObjectField) or not any(c.field_key == field_key for c in table.fields):
                self._missing(f"{table_field_key}/{field_key}")
            updated = table.model_copy(update={"fields": [c for c in table.fields if c.field_key != field_key]})
            fields = [updated if f.field_key == table_field_key else f for f in fields]
            segment_index = 1
        else:
            names = table_definition_names(table)
            if not any(f.field_key == field_key for n in names for f in self._require_definition(n).fields):
                self._missing(f"{table_field_key}/{field_key}")
            for name in names:
                definition = definitions[name]
                definitions[name] = definition.model_copy(
                    update={"fields": [f for f in definition.fields if f.field_key != field_key]}
                )
            segment_index = 2

        def drop(label: Label) -> Optional[Label]:
            if _belongs_to(label, table_field_key) and _segment(label, segment_index) == field_key:
                return None
            return label

        all_labels = await self._load_all_labels()
        changed = rewrite_labels(all_labels, drop)
        await self._commit(fields, definitions, labels_by_document=changed, previous_labels=all_labels)
        logger.info("Deleted '%s/%s'", table_field_key, field_key)
