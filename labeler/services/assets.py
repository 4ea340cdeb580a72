import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from labeler.core.config import Settings, settings as default_settings
from labeler.core.errors import LabelValidationError
from labeler.models.analysis import AnalyzeResult, OcrFile
from labeler.models.labels import Label, LabelsFile
from labeler.models.schema import Definition, FieldsFile
from labeler.services.storage import StorageProvider

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".pdf", ".jpg", ".jpeg", ".png", ".tiff", ".tif")


def is_supported_file(name: str) -> bool:
    return name.lower().endswith(SUPPORTED_EXTENSIONS)


class AssetService:
    """Reads and writes the schema, label and analysis files of a project folder."""

    def __init__(self, storage: StorageProvider, settings: Optional[Settings] = None):
        self.storage = storage
        self.settings = settings or default_settings

    def label_file_name(self, document_name: str) -> str:
        return f"{document_name}{self.settings.label_file_extension}"

    def ocr_file_name(self, document_name: str) -> str:
        return f"{document_name}{self.settings.ocr_file_extension}"

    async def list_documents(self) -> List[str]:
        names = await self.storage.list_files_in_folder()
        return [n for n in names if is_supported_file(n)]

    # ---------------------------
    # Schema
    # ---------------------------

    async def read_fields(self) -> Optional[FieldsFile]:
        raw = await self.storage.read_text(self.settings.fields_file, ignore_not_found=True)
        if raw is None:
            return None
        try:
            return FieldsFile.model_validate_json(raw)
        except ValidationError as e:
            raise LabelValidationError(f"{self.settings.fields_file} has an invalid format: {e}") from e

    async def update_fields(self, fields: Sequence, definitions: Dict[str, Definition]) -> None:
        fields_file = FieldsFile(
            schema_url=self.settings.fields_schema_url,
            fields=list(fields),
            definitions=dict(definitions),
        )
        await self.storage.write_text(
            self.settings.fields_file,
            fields_file.model_dump_json(by_alias=True, exclude_none=True, indent=4),
        )
        logger.debug("Wrote %s (%d fields)", self.settings.fields_file, len(fields_file.fields))

    # ---------------------------
    # Labels
    # ---------------------------

    async def read_labels(self, document_name: str) -> List[Label]:
        raw = await self.storage.read_text(self.label_file_name(document_name), ignore_not_found=True)
        if raw is None:
            return []
        try:
            return LabelsFile.model_validate_json(raw).labels
        except ValidationError as e:
            raise LabelValidationError(f"{self.label_file_name(document_name)} has an invalid format: {e}") from e

    async def write_labels(self, document_name: str, labels: Sequence[Label]) -> None:
        path = self.label_file_name(document_name)
        if not labels:
            await self.storage.delete_file(path, ignore_not_found=True)
            return
        labels_file = LabelsFile(
            schema_url=self.settings.labels_schema_url,
            document=document_name,
            labels=list(labels),
        )
        await self.storage.write_text(path, labels_file.model_dump_json(by_alias=True, exclude_none=True, indent=4))

    async def update_document_labels(self, labels_by_document: Dict[str, Sequence[Label]]) -> None:
        # every write settles before the first failure is raised
        results = await asyncio.gather(
            *(self.write_labels(name, labels) for name, labels in labels_by_document.items()),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def get_all_document_labels(
        self,
        loaded: Dict[str, List[Label]],
        document_names: Iterable[str],
    ) -> Dict[str, List[Label]]:
        """Labels of every document, from memory when loaded, from storage otherwise."""
        names = list(dict.fromkeys(list(document_names) + list(loaded)))
        missing = [n for n in names if n not in loaded]
        read = await asyncio.gather(*(self.read_labels(n) for n in missing))
        result = {n: list(loaded[n]) for n in names if n in loaded}
        result.update(dict(zip(missing, read)))
        return result

    # ---------------------------
    # Analysis
    # ---------------------------

    async def read_analyze_result(self, document_name: str) -> Optional[AnalyzeResult]:
        raw = await self.storage.read_text(self.ocr_file_name(document_name), ignore_not_found=True)
        if raw is None:
            return None
        try:
            return OcrFile.model_validate_json(raw).analyze_result
        except ValidationError as e:
            raise LabelValidationError(f"{self.ocr_file_name(document_name)} has an invalid format: {e}") from e
