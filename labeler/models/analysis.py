from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Word(BaseModel):
    model_config = ConfigDict(extra="allow")

    content: str = ""
    polygon: List[float] = Field(default_factory=list)
    confidence: Optional[float] = None


class Line(BaseModel):
    model_config = ConfigDict(extra="allow")

    content: str = ""
    polygon: List[float] = Field(default_factory=list)


class SelectionMark(BaseModel):
    model_config = ConfigDict(extra="allow")

    state: str = "unselected"
    polygon: List[float] = Field(default_factory=list)
    confidence: Optional[float] = None


class AnalyzedPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    page_number: int = Field(alias="pageNumber")
    width: float
    height: float
    unit: Optional[str] = None
    angle: float = 0.0
    words: List[Word] = Field(default_factory=list)
    lines: List[Line] = Field(default_factory=list)
    selection_marks: List[SelectionMark] = Field(default_factory=list, alias="selectionMarks")


class AnalyzeResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    pages: List[AnalyzedPage] = Field(default_factory=list)

    def page(self, page_number: int) -> Optional[AnalyzedPage]:
        return next((p for p in self.pages if p.page_number == page_number), None)


class OcrFile(BaseModel):
    """Contents of a `<document>.ocr.json` file."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    status: Optional[str] = None
    analyze_result: AnalyzeResult = Field(alias="analyzeResult")
