import uuid
from datetime import datetime
from typing import List
from pydantic import BaseModel, ConfigDict

from .user import User

# Base properties
class OrganizationBase(BaseModel):
    name: str

# Properties to receive on creation
class OrganizationCreate(OrganizationBase):
    slug: str | None = None # Derived from the name when omitted

# Properties stored in DB
class OrganizationInDB(OrganizationBase):
    id: uuid.UUID
    slug: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

# Properties to return to client
class Organization(OrganizationInDB):
    pass

# The organization together with its members
class OrganizationView(BaseModel):
    organization: Organization
    members: List[User]
