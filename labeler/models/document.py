from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DocumentStatus(str, Enum):
    LOADING = "Loading"
    LOADED = "Loaded"
    ANALYZING = "Analyzing"
    ANALYZED = "Analyzed"
    ANALYZE_FAILED = "AnalyzeFailed"
    LABELED = "Labeled"


class DocumentType(str, Enum):
    PDF = "application/pdf"
    TIFF = "image/tiff"
    JPEG = "image/jpeg"
    PNG = "image/png"
    UNKNOWN = "unknown"


class DocumentStates(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    loading_status: DocumentStatus = Field(DocumentStatus.LOADING, alias="loadingStatus")
    analyzing_status: Optional[DocumentStatus] = Field(None, alias="analyzingStatus")
    labeling_status: Optional[DocumentStatus] = Field(None, alias="labelingStatus")


class Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: DocumentType = DocumentType.UNKNOWN
    url: str = ""
    thumbnail: Optional[str] = None  # data URL of a PNG
    num_pages: int = Field(1, alias="numPages")
    current_page: int = Field(1, alias="currentPage")
    states: DocumentStates = Field(default_factory=DocumentStates)


class Canvas(BaseModel):
    """A rendered page: image pixels plus the rotation the page was scanned with."""

    width: int
    height: int
    angle: float = 0.0
    image: Optional[bytes] = None  # PNG
