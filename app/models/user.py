from datetime import datetime
from enum import Enum

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    TUTOR = "TUTOR"
    ASISTAN = "ASISTAN"
    STUDENT = "STUDENT"
    BOARD_MEMBER = "BOARD_MEMBER"
    ATHLETE = "ATHLETE"
    DONOR = "DONOR"


class User(Document):
    username: Indexed(str, unique=True)
    first_name: str = ""
    last_name: str = ""
    role: UserRole = UserRole.STUDENT
    tutor_id: PydanticObjectId | None = None  # assigned tutor, students only
    # Balance store: written only by the ledger, inside the same transaction as the ledger row
    points: int = 0
    experience: int = 0
    session_version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
        indexes = [[("tutor_id", 1)], [("role", 1), ("experience", -1)]]
