from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from labeler.core.errors import (
    InvariantViolation,
    LabelingError,
    LabelValidationError,
    PersistenceError,
)
from labeler.models.labels import LabelValueCandidate
from labeler.models.schema import (
    FieldFormat,
    FieldLocation,
    FieldType,
    HeaderType,
    PrimitiveField,
    TableType,
)
from labeler.routers.deps import get_session
from labeler.services.session import LabelingSession

router = APIRouter(
    prefix="/api/labeling",
    tags=["Labeling"],
)


def _http_error(e: LabelingError) -> HTTPException:
    if isinstance(e, InvariantViolation):
        return HTTPException(status_code=404, detail=e.to_dict())
    if isinstance(e, LabelValidationError):
        return HTTPException(status_code=400, detail=e.to_dict())
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=502, detail=e.to_dict())
    return HTTPException(status_code=500, detail=e.to_dict())


def _schema(session: LabelingSession):
    return session.schema.to_fields_file().model_dump(by_alias=True, exclude_none=True, mode="json")


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class NewField(_Body):
    field_key: str = Field(alias="fieldKey")
    field_type: FieldType = Field(FieldType.STRING, alias="fieldType")
    field_format: FieldFormat = Field(FieldFormat.NOT_SPECIFIED, alias="fieldFormat")


class FieldsOrder(_Body):
    field_keys: List[str] = Field(alias="fieldKeys")


class FieldUpdate(_Body):
    new_name: Optional[str] = Field(None, alias="newName")
    field_type: Optional[FieldType] = Field(None, alias="fieldType")


class NewTable(_Body):
    field_key: str = Field(alias="fieldKey")
    table_type: TableType = Field(alias="tableType")
    header_type: HeaderType = Field(HeaderType.COLUMN, alias="headerType")


class NewTableField(_Body):
    field_key: str = Field(alias="fieldKey")
    index: int = 0
    location: FieldLocation = FieldLocation.DEFINITION


class TableFieldUpdate(_Body):
    location: FieldLocation = FieldLocation.DEFINITION
    new_name: Optional[str] = Field(None, alias="newName")
    field_type: Optional[FieldType] = Field(None, alias="fieldType")


class Assignment(_Body):
    label: str
    candidates: List[LabelValueCandidate] = Field(default_factory=list)


# ---------------------------
# Schema
# ---------------------------

@router.get("/schema", summary="Current fields and definitions")
async def get_schema(session: LabelingSession = Depends(get_session)):
    return _schema(session)


@router.post("/schema/fields", summary="Add a field")
async def add_field(body: NewField, session: LabelingSession = Depends(get_session)):
    field = PrimitiveField(field_key=body.field_key, field_type=body.field_type, field_format=body.field_format)
    try:
        await session.mutations.add_field(field)
    except LabelingError as e:
        raise _http_error(e)
    return _schema(session)


@router.put("/schema/fields/order", summary="Reorder fields")
async def reorder_fields(body: FieldsOrder, session: LabelingSession = Depends(get_session)):
    by_key = {f.field_key: f for f in session.schema.fields}
    missing = [k for k in body.field_keys if k not in by_key]
    if missing:
        raise HTTPException(status_code=404, detail=f"Unknown fields: {missing}")
    try:
        await session.mutations.update_fields_order([by_key[k] for k in body.field_keys])
    except LabelingError as e:
        raise _http_error(e)
    return _schema(session)


@router.patch("/schema/fields/{field_key}", summary="Rename a field or switch its type")
async def update_field(field_key: str, body: FieldUpdate, session: LabelingSession = Depends(get_session)):
    try:
        if body.field_type is not None:
            await session.mutations.switch_field_sub_type(field_key, body.field_type)
        if body.new_name:
            await session.mutations.rename_field(field_key, body.new_name)
    except LabelingError as e:
        raise _http_error(e)
    return _schema(session)


@router.delete("/schema/fields/{field_key}", summary="Delete a field and every label on it")
async def delete_field(field_key: str, session: LabelingSession = Depends(get_session)):
    try:
        await session.mutations.delete_field(field_key)
    except LabelingError as e:
        raise _http_error(e)
    return _schema(session)


@router.post("/schema/tables", summary="Add a dynamic or fixed table")
async def add_table(body: NewTable, session: LabelingSession = Depends(get_session)):
    try:
        await session.mutations.add_table_field(body.field_key, body.table_type, body.header_type)
    except LabelingError as e:
        raise _http_error(e)
    return _schema(session)


@router.post("/schema/tables/{table_key}/fields", summary="Insert a table row or column")
async def insert_table_field(table_key: str, body: NewTableField, session: LabelingSession = Depends(get_session)):
    try:
        await session.mutations.insert_table_field(table_key, body.field_key, body.index, body.location)
    except LabelingError as e:
        raise _http_error(e)
    return _schema(session)


@router.patch("/schema/tables/{table_key}/fields/{field_key}", summary="Rename a table row/column or switch its type")
async def update_table_field(
    table_key: str,
    field_key: str,
    body: TableFieldUpdate,
    session: LabelingSession = Depends(get_session),
):
    try:
        if body.field_type is not None:
            await session.mutations.switch_table_field_sub_type(table_key, field_key, body.field_type)
        if body.new_name:
            await session.mutations.rename_table_field(table_key, field_key, body.new_name, body.location)
    except LabelingError as e:
        raise _http_error(e)
    return _schema(session)


@router.delete("/schema/tables/{table_key}/fields/{field_key}", summary="Delete a table row or column")
async def delete_table_field(
    table_key: str,
    field_key: str,
    location: FieldLocation = Query(FieldLocation.DEFINITION),
    session: LabelingSession = Depends(get_session),
):
    try:
        await session.mutations.delete_table_field(table_key, field_key, location)
    except LabelingError as e:
        raise _http_error(e)
    return _schema(session)


# ---------------------------
# Documents and labels
# ---------------------------

@router.get("/documents", summary="Documents of the project folder")
async def list_documents(session: LabelingSession = Depends(get_session)):
    return [d.model_dump(by_alias=True, exclude={"thumbnail"}, mode="json") for d in session.state.documents]


@router.get("/documents/{name}/labels", summary="Labels of one document")
async def get_labels(name: str, session: LabelingSession = Depends(get_session)):
    try:
        labels = await session.ensure_document_labels(name)
    except LabelingError as e:
        raise _http_error(e)
    return {"document": name, "labels": [l.model_dump(by_alias=True, exclude_none=True, mode="json") for l in labels]}


@router.post("/documents/{name}/labels", summary="Assign regions to a field")
async def assign_label(name: str, body: Assignment, session: LabelingSession = Depends(get_session)):
    try:
        await session.ensure_document_labels(name)
        labels = await session.labels.assign_label(body.label, document_name=name, candidates=body.candidates)
    except LabelingError as e:
        raise _http_error(e)
    return {"document": name, "labels": [l.model_dump(by_alias=True, exclude_none=True, mode="json") for l in labels]}


@router.delete("/documents/{name}/labels", summary="Delete labels by field or by label path")
async def delete_labels(
    name: str,
    field: Optional[str] = Query(None, description="Delete every label of this field"),
    label: Optional[str] = Query(None, description="Delete the label with this encoded path"),
    session: LabelingSession = Depends(get_session),
):
    if (field is None) == (label is None):
        raise HTTPException(status_code=400, detail="Pass exactly one of 'field' or 'label'.")
    try:
        await session.ensure_document_labels(name)
        if field is not None:
            labels = await session.labels.delete_label_by_field(field, document_name=name)
        else:
            labels = await session.labels.delete_label_by_label(label, document_name=name)
    except LabelingError as e:
        raise _http_error(e)
    return {"document": name, "labels": [l.model_dump(by_alias=True, exclude_none=True, mode="json") for l in labels]}
