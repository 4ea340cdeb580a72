import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from labeler.models.document import Document, DocumentStatus
from labeler.models.labels import Label, LabelValueCandidate
from labeler.models.schema import AnyField, Definition
from labeler.utils.labels import RegionOrders

logger = logging.getLogger(__name__)


class LabelingState(BaseModel):
    """
    Immutable snapshot of everything observers render from.

    Engines never mutate a snapshot in place: they build new lists/dicts and
    publish a fresh snapshot through StateStore.update().
    """

    model_config = ConfigDict(frozen=True)

    fields: List[AnyField] = Field(default_factory=list)
    definitions: Dict[str, Definition] = Field(default_factory=dict)
    color_for_fields: Dict[str, str] = Field(default_factory=dict)

    documents: List[Document] = Field(default_factory=list)
    current_document_name: Optional[str] = None

    labels: Dict[str, List[Label]] = Field(default_factory=dict)
    orders: Dict[str, RegionOrders] = Field(default_factory=dict)

    label_value_candidates: List[LabelValueCandidate] = Field(default_factory=list)
    hide_inline_label_menu: bool = True
    label_error: Optional[Dict[str, Any]] = None

    @property
    def current_document(self) -> Optional[Document]:
        return next((d for d in self.documents if d.name == self.current_document_name), None)


Subscriber = Callable[[LabelingState], None]


class StateStore:
    """Single owner of LabelingState with a subscribe/publish contract."""

    def __init__(self, initial: Optional[LabelingState] = None):
        self._state = initial or LabelingState()
        self._subscribers: List[Subscriber] = []

    @property
    def state(self) -> LabelingState:
        return self._state

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def update(self, **changes: Any) -> LabelingState:
        unknown = set(changes) - set(LabelingState.model_fields)
        if unknown:
            raise AttributeError(f"Unknown state keys: {sorted(unknown)}")
        self._state = self._state.model_copy(update=changes)
        logger.debug("state updated: %s", ", ".join(sorted(changes)))
        for callback in list(self._subscribers):
            callback(self._state)
        return self._state


def with_labeling_status(documents: List[Document], document_name: str, labeled: bool) -> List[Document]:
    """Documents list with `document_name` flagged Labeled (or unflagged) as needed."""
    updated: List[Document] = []
    for doc in documents:
        if doc.name == document_name:
            status = DocumentStatus.LABELED if labeled else None
            if doc.states.labeling_status != status:
                doc = doc.model_copy(update={"states": doc.states.model_copy(update={"labeling_status": status})})
        updated.append(doc)
    return updated
