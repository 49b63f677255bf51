"""User domain models and enums."""

from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


MAX_NAME_LENGTH = 100


class UserRole(StrEnum):
    """Actor role in the pickup workflow."""

    RESIDENT = "resident"
    COLLECTOR = "collector"
    ADMIN = "admin"


class UserStatus(StrEnum):
    """User account status."""

    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class UserProfile(BaseModel):
    """User record as seen by the engine."""

    id: str = Field(..., description="Unique user ID")
    name: str = Field(..., description="Display name of the user")
    email: str = Field(default="", description="Contact email")
    role: UserRole = Field(default=UserRole.RESIDENT, description="Actor role")
    status: UserStatus = Field(default=UserStatus.ACTIVE, description="Account status")
    latitude: float | None = Field(default=None, description="Home or working latitude")
    longitude: float | None = Field(default=None, description="Home or working longitude")

    @field_validator("name")
    @classmethod
    def validate_name_usable(cls, v: str) -> str:
        """Validate name is non-empty and bounded."""
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be empty")
        if len(v) > MAX_NAME_LENGTH:
            raise ValueError(f"Name too long (max {MAX_NAME_LENGTH} characters)")
        return v

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


class Identity(BaseModel):
    """Verified caller identity produced by the auth verifier."""

    user_id: str
    name: str
    role: UserRole
    latitude: float | None = None
    longitude: float | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def coordinates(self) -> tuple[float, float] | None:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "Identity":
        return cls(
            user_id=profile.id,
            name=profile.name,
            role=profile.role,
            latitude=profile.latitude,
            longitude=profile.longitude,
        )


class UserSummary(BaseModel):
    """Compact user description embedded in events and notifications."""

    id: str
    name: str
    role: UserRole
