import mimetypes
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel

from labeler.core.errors import NotFoundError, PersistenceError
from labeler.routers.deps import get_storage
from labeler.services.storage import StorageProvider

router = APIRouter(
    prefix="/files",
    tags=["Files"],
)


class FileContent(BaseModel):
    content: str


@router.get("", summary="List files in the project folder")
async def list_files(
    extension: Optional[str] = Query(None, description="Only files ending with this extension"),
    storage: StorageProvider = Depends(get_storage),
):
    try:
        return {"files": await storage.list_files_in_folder("", extension)}
    except PersistenceError as e:
        raise HTTPException(status_code=502, detail=e.to_dict())


@router.get("/{path:path}", summary="Read a file")
async def read_file(path: str, storage: StorageProvider = Depends(get_storage)):
    try:
        if path.lower().endswith(".json"):
            return Response(content=await storage.read_text(path), media_type="application/json")
        media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        return Response(content=await storage.read_binary(path), media_type=media_type)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.to_dict())
    except PersistenceError as e:
        raise HTTPException(status_code=502, detail=e.to_dict())


@router.put("/{path:path}", summary="Write a text file")
async def write_file(path: str, body: FileContent, storage: StorageProvider = Depends(get_storage)):
    try:
        await storage.write_text(path, body.content)
        return {"status": "ok", "path": path}
    except PersistenceError as e:
        raise HTTPException(status_code=502, detail=e.to_dict())


@router.delete("/{path:path}", summary="Delete a file")
async def delete_file(
    path: str,
    ignore_not_found: bool = Query(False, alias="ignoreNotFound"),
    storage: StorageProvider = Depends(get_storage),
):
    try:
        await storage.delete_file(path, ignore_not_found=ignore_not_found)
        return {"status": "ok", "path": path}
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.to_dict())
    except PersistenceError as e:
        raise HTTPException(status_code=502, detail=e.to_dict())
