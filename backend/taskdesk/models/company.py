"""Company profile model (single row)."""

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from taskdesk.db.base import BaseModel

SOCIAL_FIELDS = ("facebook", "instagram", "linkedin", "twitter", "youtube", "tiktok")


class Company(BaseModel):
    """Organization profile shown in settings and report headers."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    legal_name: Mapped[str | None] = mapped_column(String(150), nullable=True)
    tax_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(150), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    website: Mapped[str | None] = mapped_column(String(200), nullable=True)
    logo_url: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    country: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # Social links
    facebook: Mapped[str | None] = mapped_column(String(200), nullable=True)
    instagram: Mapped[str | None] = mapped_column(String(200), nullable=True)
    linkedin: Mapped[str | None] = mapped_column(String(200), nullable=True)
    twitter: Mapped[str | None] = mapped_column(String(200), nullable=True)
    youtube: Mapped[str | None] = mapped_column(String(200), nullable=True)
    tiktok: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Free-form settings
    meta: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<Company {self.name!r}>"
