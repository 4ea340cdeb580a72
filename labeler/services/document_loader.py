# labeler/services/document_loader.py
import asyncio
import base64
import logging
import os
from typing import Dict, Optional

from labeler.core.config import Settings, settings as default_settings
from labeler.models.document import Canvas, Document, DocumentStates, DocumentStatus, DocumentType
from labeler.services.storage import StorageProvider

# Try to import PyMuPDF at module load; raise a clear error if missing
try:
    import fitz  # PyMuPDF
except ImportError as e:
    raise RuntimeError(
        "PyMuPDF is required to render documents. "
        "Install with: pip install PyMuPDF"
    ) from e

logger = logging.getLogger(__name__)

DOCUMENT_TYPES = {
    ".pdf": DocumentType.PDF,
    ".tif": DocumentType.TIFF,
    ".tiff": DocumentType.TIFF,
    ".jpg": DocumentType.JPEG,
    ".jpeg": DocumentType.JPEG,
    ".png": DocumentType.PNG,
}


def get_document_type(name: str) -> DocumentType:
    return DOCUMENT_TYPES.get(os.path.splitext(name)[1].lower(), DocumentType.UNKNOWN)


class DocumentLoader:
    """
    Renders one stored document with PyMuPDF. PDF pages are rasterized at
    `pdf_scale`; TIFF frames and single images are rendered at their native size.
    """

    def __init__(self, storage: StorageProvider, name: str, settings: Optional[Settings] = None):
        self.storage = storage
        self.name = name
        self.settings = settings or default_settings
        self.type = get_document_type(name)
        if self.type == DocumentType.UNKNOWN:
            raise ValueError(f"Unsupported document type: {name}")
        self._doc = None

    async def _open(self):
        if self._doc is None:
            contents = await self.storage.read_binary(self.name)
            filetype = os.path.splitext(self.name)[1].lstrip(".").lower()
            self._doc = await asyncio.to_thread(fitz.open, stream=contents, filetype=filetype)
        return self._doc

    def _scale(self) -> float:
        return self.settings.pdf_scale if self.type == DocumentType.PDF else 1.0

    async def load_document_meta(self) -> Document:
        doc = await self._open()

        def _thumbnail() -> str:
            page = doc.load_page(0)
            zoom = self.settings.thumbnail_width / max(page.rect.width, 1)
            pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom))
            return "data:image/png;base64," + base64.b64encode(pix.tobytes("png")).decode("ascii")

        thumbnail = await asyncio.to_thread(_thumbnail)
        return Document(
            name=self.name,
            type=self.type,
            url=self.name,
            thumbnail=thumbnail,
            num_pages=len(doc),
            current_page=1,
            states=DocumentStates(loading_status=DocumentStatus.LOADED),
        )

    async def load_document_page(self, page_number: int) -> Canvas:
        doc = await self._open()
        if not 1 <= page_number <= len(doc):
            raise ValueError(f"{self.name} has no page {page_number}")
        scale = self._scale()

        def _render() -> Canvas:
            page = doc.load_page(page_number - 1)
            pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale))
            # get_pixmap already applies the page rotation
            return Canvas(width=pix.width, height=pix.height, angle=0.0, image=pix.tobytes("png"))

        canvas = await asyncio.to_thread(_render)
        logger.debug("rendered %s page %d at %dx%d", self.name, page_number, canvas.width, canvas.height)
        return canvas

    def close(self) -> None:
        if self._doc is not None:
            self._doc.close()
            self._doc = None


class DocumentLoaderFactory:
    """Caches one loader per document name."""

    def __init__(self, storage: StorageProvider, settings: Optional[Settings] = None):
        self.storage = storage
        self.settings = settings or default_settings
        self._loaders: Dict[str, DocumentLoader] = {}

    def get(self, name: str) -> DocumentLoader:
        loader = self._loaders.get(name)
        if loader is None:
            loader = DocumentLoader(self.storage, name, self.settings)
            self._loaders[name] = loader
        return loader

    def evict(self, name: str) -> None:
        loader = self._loaders.pop(name, None)
        if loader is not None:
            loader.close()
