from fastapi import Request

from services.image_url_service import Fetcher
from services.record_store import RecordStore
from services.staging_store import StagingStore


def get_staging_store(request: Request) -> StagingStore:
    return request.app.state.staging_store


def get_record_store(request: Request) -> RecordStore:
    return request.app.state.record_store


def get_image_fetcher(request: Request) -> Fetcher:
    return request.app.state.image_fetcher
