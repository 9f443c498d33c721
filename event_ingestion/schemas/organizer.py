"""Organizer entity shared between the ingestion engine and the admin UI."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class OrganizerStatus(str, Enum):
    """Lifecycle status of an organizer."""

    ACTIVE = "active"
    PENDING = "pending"
    ARCHIVED = "archived"


class Organizer(BaseModel):
    """
    An organizing entity (venue, association, company).

    Organizers created by the pipeline start as `pending` with
    `needs_review=True` and stay that way until a human confirms them.
    """

    id: int | None = None
    name: str
    alternative_names: list[str] = Field(default_factory=list)
    venue_name: str | None = None
    email: str | None = None
    phone: str | None = None
    website: str | None = None
    status: OrganizerStatus = OrganizerStatus.ACTIVE
    created_from_scraper: bool = False
    scraper_source: str | None = None
    needs_review: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _auto_created_requires_review(self) -> "Organizer":
        if self.created_from_scraper and self.id is None:
            if self.status != OrganizerStatus.PENDING or not self.needs_review:
                raise ValueError(
                    "organizers created by the pipeline must start pending "
                    "with needs_review=True"
                )
        return self

    @classmethod
    def auto_created(
        cls,
        name: str,
        source: str,
        venue_name: str | None = None,
        email: str | None = None,
        phone: str | None = None,
    ) -> "Organizer":
        """Build an unconfirmed organizer discovered during ingestion."""
        return cls(
            name=name,
            venue_name=venue_name,
            email=email,
            phone=phone,
            status=OrganizerStatus.PENDING,
            created_from_scraper=True,
            scraper_source=source,
            needs_review=True,
        )

    @property
    def match_names(self) -> list[str]:
        """Names used for matching: the canonical name plus alternatives."""
        return [self.name, *self.alternative_names]
