"""Input validation schemas for the ModelHub REST API."""

from pydantic import BaseModel, Field, field_validator
from typing import Optional
import re


# === Shared Validators ===

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
HTML_TAG_PATTERN = re.compile(r'</?[a-zA-Z][^>]*>')
USERNAME_PATTERN = re.compile(r'^[a-z][a-z0-9_]{2,35}$')
ID_PATTERN = re.compile(r'^[a-z0-9][a-z0-9_-]{1,63}$')


def strip_html_tags(text: str) -> str:
    """Strip HTML tags from text to prevent stored XSS.

    Matches actual HTML tags (e.g. <script>, <img onerror=...>) but preserves
    legitimate angle bracket usage (e.g. "load < 30 kN", "a < b > c").
    """
    if not text:
        return text
    return HTML_TAG_PATTERN.sub('', text)


def validate_email_format(email: str) -> str:
    """Validate and normalise email address."""
    email = email.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValueError(f'Invalid email format: {email}')
    return email


def validate_resource_id(value: str) -> str:
    value = value.strip()
    if not ID_PATTERN.match(value):
        raise ValueError(
            "id must be 2-64 lowercase letters, digits, '-' or '_', "
            "starting with a letter or digit"
        )
    return value


# === User Schemas ===

class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=36,
                          description="Lowercase login name")
    email: Optional[str] = Field(None, max_length=255)
    fname: Optional[str] = Field(None, max_length=255, description="First name")
    lname: Optional[str] = Field(None, max_length=255, description="Last name")
    admin: bool = Field(False, description="Global admin (superuser)")

    @field_validator('username')
    @classmethod
    def check_username(cls, v):
        v = v.strip()
        if not USERNAME_PATTERN.match(v):
            raise ValueError(
                'Username must start with a lowercase letter and contain only '
                'lowercase letters, digits or underscores'
            )
        return v

    @field_validator('email')
    @classmethod
    def check_email(cls, v):
        if v:
            return validate_email_format(v)
        return v

    @field_validator('fname', 'lname')
    @classmethod
    def sanitise_text(cls, v):
        return strip_html_tags(v) if v else v


class UserUpdate(BaseModel):
    """Profile changes. `admin` is honoured for global admins only."""
    email: Optional[str] = Field(None, max_length=255)
    fname: Optional[str] = Field(None, max_length=255)
    lname: Optional[str] = Field(None, max_length=255)
    admin: Optional[bool] = None

    @field_validator('email')
    @classmethod
    def check_email(cls, v):
        if v:
            return validate_email_format(v)
        return v

    @field_validator('fname', 'lname')
    @classmethod
    def sanitise_text(cls, v):
        return strip_html_tags(v) if v else v


# === Organization Schemas ===

class OrgCreate(BaseModel):
    id: str = Field(..., min_length=2, max_length=64,
                    description="URL-safe slug, unique")
    name: str = Field(..., min_length=1, max_length=255)
    custom: Optional[dict] = Field(None, description="Free-form metadata")

    @field_validator('id')
    @classmethod
    def check_id(cls, v):
        return validate_resource_id(v)

    @field_validator('name')
    @classmethod
    def sanitise_text(cls, v):
        return strip_html_tags(v) if v else v


class OrgUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    custom: Optional[dict] = None
    archived: Optional[bool] = None

    @field_validator('name')
    @classmethod
    def sanitise_text(cls, v):
        return strip_html_tags(v) if v else v


# === Project Schemas ===

class ProjectCreate(BaseModel):
    id: str = Field(..., min_length=2, max_length=64,
                    description="URL-safe slug, unique within the organization")
    name: str = Field(..., min_length=1, max_length=255)
    visibility: str = Field("private", description="private or internal")
    custom: Optional[dict] = None

    @field_validator('id')
    @classmethod
    def check_id(cls, v):
        return validate_resource_id(v)

    @field_validator('name')
    @classmethod
    def sanitise_text(cls, v):
        return strip_html_tags(v) if v else v

    @field_validator('visibility')
    @classmethod
    def check_visibility(cls, v):
        if v not in ('private', 'internal'):
            raise ValueError('Visibility must be one of: internal, private')
        return v


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    visibility: Optional[str] = None
    custom: Optional[dict] = None
    archived: Optional[bool] = None

    @field_validator('name')
    @classmethod
    def sanitise_text(cls, v):
        return strip_html_tags(v) if v else v

    @field_validator('visibility')
    @classmethod
    def check_visibility(cls, v):
        if v is not None and v not in ('private', 'internal'):
            raise ValueError('Visibility must be one of: internal, private')
        return v


# === Element Schemas ===

class ElementCreate(BaseModel):
    id: str = Field(..., min_length=2, max_length=64,
                    description="URL-safe slug, unique within the project")
    name: str = Field(..., min_length=1, max_length=255)
    type: Optional[str] = Field(None, max_length=64, description="Element type, e.g. Block")
    documentation: Optional[str] = Field(None, max_length=50000)
    custom: Optional[dict] = None

    @field_validator('id')
    @classmethod
    def check_id(cls, v):
        return validate_resource_id(v)

    @field_validator('name', 'documentation')
    @classmethod
    def sanitise_text(cls, v):
        return strip_html_tags(v) if v else v


class ElementUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[str] = Field(None, max_length=64)
    documentation: Optional[str] = Field(None, max_length=50000)
    custom: Optional[dict] = None
    archived: Optional[bool] = None

    @field_validator('name', 'documentation')
    @classmethod
    def sanitise_text(cls, v):
        return strip_html_tags(v) if v else v


# === Membership Schema ===

class RoleUpdate(BaseModel):
    """Tier names are checked by the permission engine (InvalidTier -> 400)."""
    role: str = Field(..., min_length=1, max_length=32,
                      description="read, write, admin, or none to remove")
