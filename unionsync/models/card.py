"""
Union Sync: Card Model

Local projection of the remote Union Arena catalog. One row per remote card,
keyed by the catalog's own identifier (external_id). The sync pipeline creates
a row the first time it sees an id and overwrites every mapped column on each
later sync; it never deletes rows.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy import TIMESTAMP, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from unionsync.models.base import Base

NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 1000


class Card(Base):
    """A catalog card as persisted locally."""

    __tablename__ = "cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(
        String,
        nullable=False,
        unique=True,
        index=True,
        comment="Remote catalog identifier; the reconciliation key",
    )
    code: Mapped[str] = mapped_column(
        String, nullable=False, index=True, comment="Printed card code (e.g., 'UE01BT/HTR-1-001')"
    )
    url: Mapped[str | None] = mapped_column(String, nullable=True)
    name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False)
    rarity: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    ap: Mapped[str | None] = mapped_column(String, nullable=True, comment="Action point cost")
    type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    bp: Mapped[str | None] = mapped_column(String, nullable=True, comment="Battle points")
    affinity: Mapped[str | None] = mapped_column(String, nullable=True)
    effect: Mapped[str | None] = mapped_column(Text, nullable=True)
    trigger: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_small: Mapped[str | None] = mapped_column(String, nullable=True)
    image_large: Mapped[str | None] = mapped_column(String, nullable=True)
    set_name: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    need_energy_value: Mapped[str | None] = mapped_column(String, nullable=True)
    need_energy_logo: Mapped[str | None] = mapped_column(String, nullable=True)

    # Legacy columns kept for older API consumers
    description: Mapped[str | None] = mapped_column(
        String(DESCRIPTION_MAX_LENGTH), nullable=True, comment="Defaults to effect"
    )
    image_url: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Defaults to image_large"
    )
    card_number: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        comment="Last sync that touched this row",
    )

    def __repr__(self) -> str:
        return (
            f"<Card external_id={self.external_id!r} name={self.name!r} "
            f"type={self.type!r}>"
        )


class CardRecord(BaseModel):
    """
    Field constraints for a card write.

    CardStore validates every insert and update through this model, so a bad
    remote item surfaces as a pydantic ValidationError before anything is
    written.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    external_id: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)
    url: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    rarity: Optional[str] = None
    ap: Optional[str] = None
    type: str = Field(..., min_length=1)
    bp: Optional[str] = None
    affinity: Optional[str] = None
    effect: Optional[str] = None
    trigger: Optional[str] = None
    image_small: Optional[str] = None
    image_large: Optional[str] = None
    set_name: Optional[str] = None
    need_energy_value: Optional[str] = None
    need_energy_logo: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    image_url: Optional[str] = None
    card_number: Optional[str] = None

    @model_validator(mode="after")
    def fill_legacy_fields(self) -> CardRecord:
        """Default description from effect and image_url from image_large."""
        if not self.description and self.effect:
            self.description = self.effect
        if not self.image_url and self.image_large:
            self.image_url = self.image_large
        return self

    def column_values(self) -> dict[str, Any]:
        """All mapped columns, including empty ones, for a full overwrite."""
        return self.model_dump()
