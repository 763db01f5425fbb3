"""Company profile service (single row)."""

import json
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.exceptions import ValidationError
from taskdesk.models.company import SOCIAL_FIELDS, Company
from taskdesk.services.access_control import Principal, require_admin

logger = structlog.get_logger()

DEFAULT_COMPANY_NAME = "My Company"

PROFILE_FIELDS = (
    "name",
    "legal_name",
    "tax_id",
    "email",
    "phone",
    "website",
    "logo_url",
    "address",
    "city",
    "country",
)


def _meta_dict(value: Any) -> dict:
    if value is None or value == "":
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            raise ValidationError("meta must be a JSON object", field="meta")
        if isinstance(parsed, dict):
            return parsed
    raise ValidationError("meta must be a JSON object", field="meta")


def flatten_company_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Merge social links grouped under ``socials`` into top-level fields.

    A top-level value wins over the grouped one.
    """
    data = {key: value for key, value in payload.items() if key != "socials"}
    socials = payload.get("socials") or {}
    for name in SOCIAL_FIELDS:
        if data.get(name) is None and socials.get(name) is not None:
            data[name] = socials[name]
    return data


class CompanyService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self) -> Company | None:
        result = await self.db.execute(select(Company).order_by(Company.id.asc()).limit(1))
        return result.scalar_one_or_none()

    async def upsert(self, principal: Principal, payload: dict[str, Any]) -> Company:
        """Create the company profile or patch the fields present in ``payload``."""
        require_admin(principal)
        data = flatten_company_payload(payload)

        values: dict[str, Any] = {}
        for name in PROFILE_FIELDS + SOCIAL_FIELDS:
            if name in data:
                value = data[name]
                values[name] = value.strip() if isinstance(value, str) else value
        if "meta" in data:
            values["meta"] = _meta_dict(data["meta"])
        if "name" in values and not values["name"]:
            raise ValidationError("name cannot be empty", field="name")

        company = await self.get()
        if company is None:
            values.setdefault("name", DEFAULT_COMPANY_NAME)
            values.setdefault("meta", {})
            company = Company(**values)
            self.db.add(company)
            action = "company_created"
        else:
            for name, value in values.items():
                setattr(company, name, value)
            action = "company_updated"

        await self.db.commit()
        logger.info(action, company_id=company.id, fields=sorted(values), actor_id=principal.id)
        return company

    async def update_logo(self, principal: Principal, logo_url: str | None) -> Company:
        require_admin(principal)
        if not logo_url or not str(logo_url).strip():
            raise ValidationError("logo_url is required", field="logo_url")
        return await self.upsert(principal, {"logo_url": str(logo_url).strip()})
