# models/user.py
from datetime import datetime

from pydantic import Field

from models.base import CamelModel


class User(CamelModel):
    id: int
    username: str
    # Credential hash; never serialized back to clients
    password: str = Field(exclude=True, repr=False)
    is_repairman: bool = False
    is_admin: bool = False
    is_blocked: bool = False
    created_at: datetime | None = None


class UserRegister(CamelModel):
    username: str = Field(min_length=3, max_length=100)
    password: str = Field(min_length=6, max_length=128)
    is_repairman: bool = False


class UserLogin(CamelModel):
    username: str
    password: str
