from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .tax_classes import TaxClassMap

DEFAULT_TRANSFER_DERIVATION_THRESHOLD = Decimal("0.9")
DEFAULT_PACKAGING_LOSS_TOLERANCE_LITERS = Decimal("2")


class ReconciliationPolicy(BaseModel):
    """Tunable policy injected into the engine.

    Both numeric values are heuristics fitted to observed data anomalies,
    not accounting rules:

    - ``transfer_derivation_threshold``: a batch with a parent whose transfers in
      reach this fraction of its declared initial volume is treated as filled
      by transfer, and its declared initial volume is not counted.
    - ``packaging_loss_tolerance_liters``: when a packaging run's volume taken is
      within this many liters of packaged product plus declared loss, the loss is
      already inside the volume taken.
    """

    model_config = ConfigDict(frozen=True)

    transfer_derivation_threshold: Decimal = DEFAULT_TRANSFER_DERIVATION_THRESHOLD
    packaging_loss_tolerance_liters: Decimal = DEFAULT_PACKAGING_LOSS_TOLERANCE_LITERS
    tax_class_map: TaxClassMap = Field(default_factory=TaxClassMap)

    @model_validator(mode="after")
    def _validate(self) -> ReconciliationPolicy:
        if not Decimal(0) < self.transfer_derivation_threshold <= Decimal(1):
            raise ValueError("transfer_derivation_threshold must be in (0, 1]")
        if self.packaging_loss_tolerance_liters < 0:
            raise ValueError("packaging_loss_tolerance_liters must be >= 0")
        return self
