# -*- coding: utf-8 -*-

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from common.normalize import is_evm_address
from identity.models import Role

TWITTER_RE = re.compile(r"^[A-Za-z0-9_]{1,15}$")
DISCORD_RE = re.compile(r"^@?[a-zA-Z0-9._#-]+$")
URL_RE = re.compile(r"^(https?://|/)[^\s<>'\"]*$", re.IGNORECASE)
HTML_MARKUP_RE = re.compile(r"[<>]")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def clean_text(value: Optional[str]) -> Optional[str]:
    if value is not None and HTML_MARKUP_RE.search(value):
        raise ValueError("HTML markup is not allowed")
    return value


def clean_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not EMAIL_RE.match(value):
        raise ValueError("Invalid email format")
    return value.lower()


def clean_twitter(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().lstrip("@")
    if not value:
        return None
    if not TWITTER_RE.match(value):
        raise ValueError("Twitter handle must be 1-15 characters, letters, numbers, and underscores only")
    return value


def clean_discord(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not 2 <= len(value) <= 50:
        raise ValueError("Discord username must be 2-50 characters")
    if not DISCORD_RE.match(value):
        raise ValueError("Invalid username format")
    return value


def clean_url(value: Optional[str]) -> Optional[str]:
    """http(s) or site-relative URL; "" clears the field."""
    if value is None:
        return None
    value = value.strip()
    if value == "":
        return ""
    if len(value) > 2048 or not URL_RE.match(value):
        raise ValueError("Invalid URL format")
    return value


class ProfileFields(BaseModel):
    """Self-service profile columns; `role` is deliberately not one of them."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=254)
    description: Optional[str] = Field(None, max_length=500)
    twitter: Optional[str] = None
    discord: Optional[str] = None
    website: Optional[str] = None
    avatar_url: Optional[str] = Field(None, max_length=255)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: Optional[str]) -> Optional[str]:
        return clean_email(value)

    @field_validator("twitter")
    @classmethod
    def check_twitter(cls, value: Optional[str]) -> Optional[str]:
        return clean_twitter(value)

    @field_validator("discord")
    @classmethod
    def check_discord(cls, value: Optional[str]) -> Optional[str]:
        return clean_discord(value)

    @field_validator("website", "avatar_url")
    @classmethod
    def check_url(cls, value: Optional[str]) -> Optional[str]:
        return clean_url(value)

    @field_validator("name", "description")
    @classmethod
    def check_text(cls, value: Optional[str]) -> Optional[str]:
        return clean_text(value)

    def provided(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ProfileUpdate(ProfileFields):
    @model_validator(mode="after")
    def require_some_field(self) -> "ProfileUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        return self


class AdminCreateUser(ProfileFields):
    address: str = Field(..., description="EVM address (0x...)")
    role: Role = Role.USER

    @field_validator("address")
    @classmethod
    def check_address(cls, value: str) -> str:
        if not is_evm_address(value):
            raise ValueError("address must be a 0x-prefixed 20-byte hex string")
        return value

    def profile_fields(self) -> Dict[str, Any]:
        data = self.provided()
        data.pop("address", None)
        data.pop("role", None)
        return data


class RoleUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: Role


class ProfileOut(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    twitter: Optional[str] = None
    discord: Optional[str] = None
    website: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[str] = None


class AdminUserList(BaseModel):
    items: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = 0
