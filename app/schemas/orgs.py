from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from app.core.tenant import normalize_org_id, org_slug


class OrgCreateRequest(BaseModel):
    org_id: str = Field(min_length=2, max_length=64)
    name: str = Field(min_length=2, max_length=255)
    slug: str | None = Field(default=None, max_length=255)
    contact_email: EmailStr | None = None
    contact_phone: str | None = Field(default=None, max_length=50)

    @field_validator("org_id", mode="before")
    @classmethod
    def _normalize_org_id(cls, value):
        return normalize_org_id(value) if isinstance(value, str) else value

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _fill_slug(self) -> "OrgCreateRequest":
        # Slugs default to the dealership name.
        slug = org_slug(self.slug or self.name)
        if len(slug) < 2:
            raise ValueError("slug must contain at least two letters or digits")
        self.slug = slug
        return self


class OrgDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    status: str
    contact_email: str | None = None
    contact_phone: str | None = None
    created_at: datetime
    updated_at: datetime


class OrgListResponse(BaseModel):
    items: list[OrgDTO]
    total: int
