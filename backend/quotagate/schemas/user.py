import uuid
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, EmailStr, ConfigDict

# Base properties
class UserBase(BaseModel):
    email: EmailStr
    full_name: str | None = None

# Properties to receive on creation
class UserCreate(UserBase):
    supabase_auth_id: uuid.UUID
    role: str = "admin" # The user who creates an organization administers it

# Properties an admin sends to add someone to their organization
class MemberCreate(UserBase):
    role: Literal["admin", "member"] = "member"

# Properties stored in DB
class UserInDB(UserBase):
    id: uuid.UUID
    supabase_auth_id: uuid.UUID | None # None until the member first logs in
    organization_id: uuid.UUID
    role: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

# Properties to return to client
class User(UserInDB):
    pass
