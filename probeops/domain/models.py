"""Pydantic models shared across client/service layers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class SubscriptionTier(str, Enum):
    FREE = "free"
    STANDARD = "standard"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)


TIER_ORDER: tuple[SubscriptionTier, ...] = (
    SubscriptionTier.FREE,
    SubscriptionTier.STANDARD,
    SubscriptionTier.ENTERPRISE,
)


class UserModel(BaseModel):
    """Canonical session user; role and tier are always populated."""

    model_config = ConfigDict(extra="ignore")

    id: int
    username: str
    email: str | None = None
    created_at: str | None = None
    is_active: bool = True
    is_admin: bool = False
    role: Role = Role.USER
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    api_key_count: int = 0


class Credentials(BaseModel):
    email: str
    password: str


class NewUser(BaseModel):
    username: str
    email: str
    password: str


class LoginResult(BaseModel):
    user: UserModel
    token: str
    message: str | None = None


class RegisterResult(BaseModel):
    user: UserModel
    api_key: str | None = None
    message: str | None = None


class UsageWindow(BaseModel):
    limit: int
    used: int
    remaining: int


class RateLimitModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tier: SubscriptionTier
    daily: UsageWindow
    monthly: UsageWindow
    probe_interval: int = Field(description="Minimum minutes between probes.")
    fetched_at: datetime | None = None
    is_fallback: bool = False


class ApiKeyModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    user_id: int | None = None
    name: str
    key: str
    created_at: str | None = None
    description: str | None = None


class CreatedApiKey(BaseModel):
    key: str
    id: int | None = None
    name: str | None = None


class ProbeRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    probe_type: str
    target: str
    status: str
    result: Any = None
    created_at: str | None = None


__all__ = [
    "ApiKeyModel",
    "CreatedApiKey",
    "Credentials",
    "LoginResult",
    "NewUser",
    "ProbeRecord",
    "RateLimitModel",
    "RegisterResult",
    "Role",
    "SubscriptionTier",
    "TIER_ORDER",
    "UsageWindow",
    "UserModel",
]
