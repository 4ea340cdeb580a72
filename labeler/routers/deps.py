from typing import Optional

from labeler.core.config import settings
from labeler.services.session import LabelingSession, create_session
from labeler.services.storage import StorageProvider

_session: Optional[LabelingSession] = None


async def get_session() -> LabelingSession:
    global _session
    if _session is None:
        session = create_session(settings)
        await session.load_workspace()
        _session = session
    return _session


async def get_storage() -> StorageProvider:
    session = await get_session()
    return session.storage
