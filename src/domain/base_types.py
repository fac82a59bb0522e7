from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import NewType
from uuid import UUID

from pydantic import BaseModel, model_validator

BatchId = NewType("BatchId", str)
EventId = NewType("EventId", UUID)
TransferId = NewType("TransferId", UUID)


class Classification(StrEnum):
    BASE_FERMENT = "base_ferment"
    SECONDARY_FERMENT = "secondary_ferment"
    FORTIFIED_BLEND = "fortified_blend"
    JUICE_ONLY = "juice_only"
    DISTILLATE_RESULT = "distillate_result"
    OTHER = "other"


class OriginStatus(StrEnum):
    """Human-asserted flag on whether a batch's initial volume is new production."""

    PENDING = "pending"
    VERIFIED = "verified"
    DUPLICATE = "duplicate"
    EXCLUDED = "excluded"


class TaxClass(StrEnum):
    HARD_CIDER = "hard_cider"
    WINE_UNDER_16 = "wine_under_16"
    WINE_16_TO_21 = "wine_16_to_21"
    WINE_21_TO_24 = "wine_21_to_24"
    SPARKLING_WINE = "sparkling_wine"
    CARBONATED_WINE = "carbonated_wine"
    APPLE_BRANDY = "apple_brandy"
    GRAPE_SPIRITS = "grape_spirits"


class Batch(BaseModel):
    """A quantity of liquid tracked as a unit from creation to depletion.

    ``parent_batch_id`` is a lookup relation only. Volumes are liters.
    """

    id: BatchId
    name: str | None = None
    parent_batch_id: BatchId | None = None
    classification: Classification = Classification.BASE_FERMENT
    declared_initial_volume: Decimal
    origin_status: OriginStatus = OriginStatus.PENDING
    is_derived_by_split: bool = False
    start_timestamp: datetime

    @model_validator(mode="after")
    def _validate_fields(self) -> Batch:
        if not self.id:
            raise ValueError("Batch.id must be non-empty")
        if self.declared_initial_volume < 0:
            raise ValueError("declared_initial_volume must be >= 0")
        if self.parent_batch_id is not None and self.parent_batch_id == self.id:
            raise ValueError("A batch cannot be its own parent")
        return self
