"""Dataset Lifecycle Manager: the durable record's status machine and expiry."""
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from config import DATASET_TTL_HOURS
from logger import get_logger
from models.dataset_db_model import DatasetDB, utcnow
from services.errors import DatasetGone, DatasetNotFound, InvalidStatusTransition
from services.record_store import RecordStore

logger = get_logger(__name__)


class DatasetStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    FINALIZED = "finalized"
    EXPIRED = "expired"
    FAILED = "failed"


TRANSITIONS: Dict[DatasetStatus, FrozenSet[DatasetStatus]] = {
    DatasetStatus.PENDING: frozenset({
        DatasetStatus.UPLOADING, DatasetStatus.PROCESSING, DatasetStatus.FINALIZED,
        DatasetStatus.EXPIRED, DatasetStatus.FAILED,
    }),
    DatasetStatus.UPLOADING: frozenset({DatasetStatus.PROCESSING, DatasetStatus.EXPIRED, DatasetStatus.FAILED}),
    DatasetStatus.PROCESSING: frozenset({
        DatasetStatus.PENDING, DatasetStatus.FINALIZED, DatasetStatus.EXPIRED, DatasetStatus.FAILED,
    }),
    DatasetStatus.FAILED: frozenset({DatasetStatus.EXPIRED}),
    DatasetStatus.FINALIZED: frozenset(),
    DatasetStatus.EXPIRED: frozenset(),
}


def transition(current: str, target: DatasetStatus) -> DatasetStatus:
    """Validate a status change; the only place status moves are checked."""
    source = DatasetStatus(current)
    if target not in TRANSITIONS[source]:
        raise InvalidStatusTransition(source.value, target.value)
    return target


def default_expiry(now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(hours=DATASET_TTL_HOURS)


def is_expired(record: DatasetDB, now: Optional[datetime] = None) -> bool:
    if record.status == DatasetStatus.EXPIRED.value:
        return True
    return record.expires_at is not None and (now or utcnow()) >= record.expires_at


def time_remaining_ms(record: DatasetDB, now: Optional[datetime] = None) -> Optional[int]:
    if record.expires_at is None:
        return None
    remaining = record.expires_at - (now or utcnow())
    return max(0, int(remaining.total_seconds() * 1000))


def _mark_expired(records: RecordStore, record: DatasetDB) -> None:
    if record.status != DatasetStatus.EXPIRED.value:
        record.status = transition(record.status, DatasetStatus.EXPIRED).value
        records.save(record)
        logger.info("Dataset %s marked expired", record.id)


def get_live_dataset(records: RecordStore, dataset_id: str, now: Optional[datetime] = None) -> DatasetDB:
    """Fetch a dataset that has not expired; expired ones answer Gone."""
    record = records.get(dataset_id)
    if record is None:
        raise DatasetNotFound(dataset_id)
    if is_expired(record, now):
        _mark_expired(records, record)
        raise DatasetGone(dataset_id)
    return record


def finalize(records: RecordStore, dataset_id: str, now: Optional[datetime] = None) -> Tuple[DatasetDB, bool]:
    """
    Make a dataset permanent. Returns (record, changed); finalizing twice is a
    no-op success that keeps the first finalizedAt.
    """
    record = get_live_dataset(records, dataset_id, now)
    if record.status == DatasetStatus.FINALIZED.value:
        return record, False

    record.status = transition(record.status, DatasetStatus.FINALIZED).value
    record.finalized_at = now or utcnow()
    record.expires_at = None
    record = records.save(record)
    logger.info("Dataset %s finalized", dataset_id)
    return record, True


def expire_overdue(records: RecordStore, now: Optional[datetime] = None) -> int:
    """Delete records past their expiry, standing in for a TTL index."""
    removed = records.purge_expired(now or utcnow())
    if removed:
        logger.info("Expired %d datasets", removed)
    return removed
