# teamchat/models/models.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UserOut(BaseModel):
    id: str = Field(serialization_alias="_id")
    email: str
    created_at: Optional[datetime] = Field(default=None, serialization_alias="createdAt")


class RegisterRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalise_email(cls, value: str) -> str:
        value = value.strip().lower()
        if len(value) < 6:
            raise ValueError("Email must be at least 6 characters long")
        if len(value) > 50:
            raise ValueError("Email must be at most 50 characters long")
        return value

    @field_validator("password")
    @classmethod
    def require_password(cls, value: str) -> str:
        if not value:
            raise ValueError("Password is required")
        return value


class LoginRequest(BaseModel):
    email: str
    password: str


class AuthResponse(BaseModel):
    user: UserOut
    token: str


class ProjectOut(BaseModel):
    id: str = Field(serialization_alias="_id")
    name: str
    users: List[str] = []
    created_at: Optional[datetime] = Field(default=None, serialization_alias="createdAt")


class CreateProjectRequest(BaseModel):
    name: str


class AddUsersRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(alias="projectId")
    users: List[str]


class ChatPostRequest(BaseModel):
    message: str
    room: Optional[str] = None
