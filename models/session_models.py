from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class UploadSession(BaseModel):
    """Ephemeral bookkeeping for one in-progress chunked upload."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    upload_id: str
    filename: str
    file_size: int
    mime_type: str = ""
    chunk_size: int
    total_chunks: int
    uploaded_chunks: List[int] = Field(default_factory=list)
    created_at: str

    @property
    def uploaded_count(self) -> int:
        return len(self.uploaded_chunks)

    @property
    def is_complete(self) -> bool:
        return self.uploaded_count == self.total_chunks
