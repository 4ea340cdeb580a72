from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    DATE = "date"
    TIME = "time"
    SELECTION_MARK = "selectionMark"
    SIGNATURE = "signature"
    ARRAY = "array"
    OBJECT = "object"


PRIMITIVE_FIELD_TYPES = (
    FieldType.STRING,
    FieldType.NUMBER,
    FieldType.INTEGER,
    FieldType.DATE,
    FieldType.TIME,
    FieldType.SELECTION_MARK,
    FieldType.SIGNATURE,
)


class FieldFormat(str, Enum):
    NOT_SPECIFIED = "not-specified"
    CURRENCY = "currency"
    DECIMAL = "decimal"
    DECIMAL_COMMA_SEPARATED = "decimal-commas"
    NO_WHITESPACES = "no-whitespaces"
    ALPHANUMERIC = "alphanumeric"
    DMY = "dmy"
    MDY = "mdy"
    YMD = "ymd"


class TableType(str, Enum):
    DYNAMIC = "dynamic"
    FIXED = "fixed"


class HeaderType(str, Enum):
    COLUMN = "column"
    ROW = "row"


class VisualizationHint(str, Enum):
    VERTICAL = "vertical"
    HORIZONTAL = "horizontal"


class FieldLocation(str, Enum):
    """Which axis of a table a sub-field lives on: the table's own children or its Definition."""

    FIELD = "field"
    DEFINITION = "definition"


class _FieldBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    field_key: str = Field(alias="fieldKey")
    field_format: FieldFormat = Field(FieldFormat.NOT_SPECIFIED, alias="fieldFormat")


class PrimitiveField(_FieldBase):
    field_type: FieldType = Field(alias="fieldType")


class TableChildField(_FieldBase):
    # fieldType names a Definition, e.g. "items_object"
    field_type: str = Field(alias="fieldType")


class ArrayField(_FieldBase):
    field_type: FieldType = Field(FieldType.ARRAY, alias="fieldType")
    item_type: str = Field(alias="itemType")


class ObjectField(_FieldBase):
    field_type: FieldType = Field(FieldType.OBJECT, alias="fieldType")
    fields: List[TableChildField] = Field(default_factory=list)
    visualization_hint: Optional[VisualizationHint] = Field(None, alias="visualizationHint")


def _field_variant(value: Any) -> str:
    if isinstance(value, dict):
        field_type = value.get("fieldType", value.get("field_type"))
    else:
        field_type = getattr(value, "field_type", None)
    if field_type == FieldType.ARRAY:
        return "array"
    if field_type == FieldType.OBJECT:
        return "object"
    return "primitive"


AnyField = Annotated[
    Union[
        Annotated[PrimitiveField, Tag("primitive")],
        Annotated[ArrayField, Tag("array")],
        Annotated[ObjectField, Tag("object")],
    ],
    Discriminator(_field_variant),
]


class Definition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    field_key: str = Field(alias="fieldKey")
    field_type: FieldType = Field(FieldType.OBJECT, alias="fieldType")
    field_format: FieldFormat = Field(FieldFormat.NOT_SPECIFIED, alias="fieldFormat")
    fields: List[PrimitiveField] = Field(default_factory=list)


class FieldsFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    schema_url: Optional[str] = Field(None, alias="$schema")
    fields: List[AnyField] = Field(default_factory=list)
    definitions: Dict[str, Definition] = Field(default_factory=dict)


def is_table_field(field: Any) -> bool:
    return isinstance(field, (ArrayField, ObjectField))
