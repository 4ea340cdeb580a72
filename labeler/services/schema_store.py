import logging
from typing import Any, Dict, List, Optional, Sequence

from labeler.core.errors import UnknownFieldError
from labeler.models.schema import ArrayField, Definition, FieldsFile, ObjectField
from labeler.services.state import StateStore

logger = logging.getLogger(__name__)

FIELD_COLORS = [
    "#ff6b6b", "#4ecdc4", "#45b7d1", "#f9a03f", "#8e7cc3",
    "#6aa84f", "#e06666", "#3d85c6", "#c27ba0", "#b45f06",
    "#76a5af", "#ffd966", "#93c47d", "#a64d79", "#674ea7",
]


def next_color(used: Sequence[str]) -> str:
    for color in FIELD_COLORS:
        if color not in used:
            return color
    return FIELD_COLORS[len(used) % len(FIELD_COLORS)]


def table_definition_names(field: Any) -> List[str]:
    """Definitions a table field points at: its itemType, or its children's types."""
    if isinstance(field, ArrayField):
        return [field.item_type]
    if isinstance(field, ObjectField):
        names: List[str] = []
        for child in field.fields:
            if child.field_type not in names:
                names.append(child.field_type)
        return names
    return []


class SchemaStore:
    """Read side of the field/definition graph plus per-field display colours."""

    def __init__(self, store: StateStore):
        self.store = store

    @property
    def fields(self) -> List[Any]:
        return self.store.state.fields

    @property
    def definitions(self) -> Dict[str, Definition]:
        return self.store.state.definitions

    @property
    def colors(self) -> Dict[str, str]:
        return self.store.state.color_for_fields

    def get_field(self, field_key: str) -> Optional[Any]:
        return next((f for f in self.fields if f.field_key == field_key), None)

    def require_field(self, field_key: str) -> Any:
        field = self.get_field(field_key)
        if field is None:
            raise UnknownFieldError(field_key)
        return field

    def has_field(self, field_key: str) -> bool:
        return self.get_field(field_key) is not None

    def get_definition(self, name: str) -> Optional[Definition]:
        return self.definitions.get(name)

    def load(self, fields_file: FieldsFile) -> None:
        colors: Dict[str, str] = {}
        for field in fields_file.fields:
            colors[field.field_key] = next_color(list(colors.values()))
        self.store.update(
            fields=list(fields_file.fields),
            definitions=dict(fields_file.definitions),
            color_for_fields=colors,
        )
        logger.info("Loaded schema with %d fields and %d definitions",
                    len(fields_file.fields), len(fields_file.definitions))

    def to_fields_file(self, schema_url: Optional[str] = None) -> FieldsFile:
        return FieldsFile(schema_url=schema_url, fields=list(self.fields), definitions=dict(self.definitions))

    # colour map helpers return new dicts; callers publish them

    def with_color(self, field_key: str) -> Dict[str, str]:
        colors = dict(self.colors)
        if field_key not in colors:
            colors[field_key] = next_color(list(colors.values()))
        return colors

    def with_renamed_color(self, old_key: str, new_key: str) -> Dict[str, str]:
        colors = dict(self.colors)
        if old_key in colors:
            colors[new_key] = colors.pop(old_key)
        else:
            colors[new_key] = next_color(list(colors.values()))
        return colors

    def without_color(self, field_key: str) -> Dict[str, str]:
        colors = dict(self.colors)
        colors.pop(field_key, None)
        return colors
