from datetime import datetime
from typing import Optional

from sqlalchemy import delete

from database import Base, make_session_factory
from models.dataset_db_model import DatasetDB


class RecordStore:
    """Durable dataset records: create / get / lookup by upload / save plus the expiry index."""

    def create(self, **fields) -> DatasetDB:
        raise NotImplementedError

    def get(self, dataset_id: str) -> Optional[DatasetDB]:
        raise NotImplementedError

    def find_by_staging_ref(self, upload_id: str) -> Optional[DatasetDB]:
        raise NotImplementedError

    def save(self, record: DatasetDB) -> DatasetDB:
        raise NotImplementedError

    def purge_expired(self, now: datetime) -> int:
        raise NotImplementedError


class SqlRecordStore(RecordStore):
    def __init__(self, engine):
        self.engine = engine
        self.session_factory = make_session_factory(engine)

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def create(self, **fields) -> DatasetDB:
        with self.session_factory() as db:
            record = DatasetDB(**fields)
            db.add(record)
            db.commit()
            db.refresh(record)
            return record

    def get(self, dataset_id: str) -> Optional[DatasetDB]:
        with self.session_factory() as db:
            return db.get(DatasetDB, dataset_id)

    def find_by_staging_ref(self, upload_id: str) -> Optional[DatasetDB]:
        with self.session_factory() as db:
            return db.query(DatasetDB).filter(DatasetDB.staging_ref == upload_id).first()

    def save(self, record: DatasetDB) -> DatasetDB:
        with self.session_factory() as db:
            merged = db.merge(record)
            db.commit()
            db.refresh(merged)
            return merged

    def purge_expired(self, now: datetime) -> int:
        """Delete every record whose expiry timestamp has passed; finalized rows carry none."""
        with self.session_factory() as db:
            result = db.execute(
                delete(DatasetDB)
                .where(DatasetDB.expires_at.is_not(None))
                .where(DatasetDB.expires_at <= now)
            )
            db.commit()
            return result.rowcount
