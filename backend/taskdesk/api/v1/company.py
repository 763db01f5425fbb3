"""Company profile endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.api.v1.auth import AdminPrincipal, CurrentUser
from taskdesk.db.session import get_db_session
from taskdesk.services.company import CompanyService

router = APIRouter()


class Socials(BaseModel):
    facebook: str | None = None
    instagram: str | None = None
    linkedin: str | None = None
    twitter: str | None = None
    youtube: str | None = None
    tiktok: str | None = None


class CompanyUpsert(BaseModel):
    """Company fields to set; omitted fields are left unchanged."""

    name: str | None = Field(None, max_length=150)
    legal_name: str | None = Field(None, max_length=150)
    tax_id: str | None = Field(None, max_length=50)
    email: str | None = Field(None, max_length=150)
    phone: str | None = Field(None, max_length=50)
    website: str | None = Field(None, max_length=200)
    logo_url: str | None = Field(None, max_length=255)
    address: str | None = Field(None, max_length=255)
    city: str | None = Field(None, max_length=120)
    country: str | None = Field(None, max_length=120)
    facebook: str | None = None
    instagram: str | None = None
    linkedin: str | None = None
    twitter: str | None = None
    youtube: str | None = None
    tiktok: str | None = None
    socials: Socials | None = None
    meta: dict[str, Any] | str | None = None


class LogoUpdate(BaseModel):
    logo_url: str


class CompanyResponse(BaseModel):
    id: int
    name: str
    legal_name: str | None
    tax_id: str | None
    email: str | None
    phone: str | None
    website: str | None
    logo_url: str | None
    address: str | None
    city: str | None
    country: str | None
    facebook: str | None
    instagram: str | None
    linkedin: str | None
    twitter: str | None
    youtube: str | None
    tiktok: str | None
    meta: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CompanyEnvelope(BaseModel):
    company: CompanyResponse | None
    message: str | None = None


def _to_response(company) -> CompanyResponse | None:
    return CompanyResponse.model_validate(company) if company is not None else None


@router.get("", response_model=CompanyEnvelope)
async def get_company(
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
):
    company = await CompanyService(db).get()
    return CompanyEnvelope(company=_to_response(company))


@router.put("", response_model=CompanyEnvelope)
async def upsert_company(
    body: CompanyUpsert,
    principal: AdminPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    payload = body.model_dump(exclude_unset=True)
    company = await CompanyService(db).upsert(principal, payload)
    return CompanyEnvelope(company=_to_response(company), message="Company saved")


@router.put("/logo", response_model=CompanyEnvelope)
async def update_company_logo(
    body: LogoUpdate,
    principal: AdminPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    company = await CompanyService(db).update_logo(principal, body.logo_url)
    return CompanyEnvelope(company=_to_response(company), message="Logo updated")
