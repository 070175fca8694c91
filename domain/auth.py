"""Domain Entities - Auth"""
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID, uuid4
from typing import Optional

class User(BaseModel):
    """Front-desk operator acting on behalf of one hotel"""
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID = Field(default_factory=uuid4)
    username: str
    hotel_id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    disabled: bool = False

    @property
    def actor(self) -> str:
        """Name recorded on transitions and payments"""
        return self.full_name or self.username

class UserInDB(User):
    """User with hashed password for DB storage"""
    hashed_password: str
