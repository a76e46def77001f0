import uuid
from datetime import datetime
from typing import List
from pydantic import BaseModel, ConfigDict, Field

class DocumentVersion(BaseModel):
    version_number: int
    original_file_name: str
    file_size: int
    uploaded_by: uuid.UUID
    uploaded_at: datetime

    model_config = ConfigDict(from_attributes=True)

# Properties to receive on update
class DocumentUpdate(BaseModel):
    title: str | None = None
    description: str | None = None

class DocumentShare(BaseModel):
    user_ids: List[uuid.UUID] = Field(min_length=1)

# Properties to return to client
class Document(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    uploaded_by: uuid.UUID
    title: str
    description: str
    original_file_name: str
    file_size: int
    mime_type: str
    shared_with: List[str]
    current_version: int
    versions: List[DocumentVersion]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
