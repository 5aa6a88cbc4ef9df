from logger import get_logger
from services.chunk_session_service import chunk_key
from services.errors import MissingChunk
from services.staging_store import StagingStore

logger = get_logger(__name__)


def assemble(store: StagingStore, upload_id: str, total_chunks: int) -> bytes:
    """Concatenate chunks 0..total_chunks-1 in index order; stop at the first gap."""
    parts = []
    for index in range(total_chunks):
        blob = store.get(chunk_key(upload_id, index))
        if blob is None:
            logger.warning("Upload %s is missing chunk %d of %d", upload_id, index, total_chunks)
            raise MissingChunk(upload_id, index)
        parts.append(blob)
    return b"".join(parts)
