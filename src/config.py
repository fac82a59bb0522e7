from __future__ import annotations

from decimal import Decimal
from functools import cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from domain.base_types import Classification, TaxClass
from domain.policy import ReconciliationPolicy
from domain.tax_classes import TaxClassMap
from domain.waterfall import WaterfallFilters


class AppSettings(BaseSettings):
    db_file: Path = Path("cellar_recon.db")
    transfer_derivation_threshold: Decimal = Decimal("0.9")
    packaging_loss_tolerance_liters: Decimal = Decimal("2")
    # e.g. RECON_TAX_CLASS_OVERRIDES='{"fortified_blend": "wine_21_to_24", "juice_only": null}'
    tax_class_overrides: dict[Classification, TaxClass | None] = {}
    reconstruction_workers: int = 1
    waterfall_start_inclusive: bool = False
    waterfall_end_inclusive: bool = True
    waterfall_count_scope_crossings: bool = True
    opening_balance_liters: Decimal = Decimal(0)
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="RECON_", env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def reconciliation_policy(self) -> ReconciliationPolicy:
        return ReconciliationPolicy(
            transfer_derivation_threshold=self.transfer_derivation_threshold,
            packaging_loss_tolerance_liters=self.packaging_loss_tolerance_liters,
            tax_class_map=TaxClassMap.with_overrides(self.tax_class_overrides),
        )

    def waterfall_filters(self) -> WaterfallFilters:
        return WaterfallFilters(
            start_inclusive=self.waterfall_start_inclusive,
            end_inclusive=self.waterfall_end_inclusive,
            packaging_loss_tolerance_liters=self.packaging_loss_tolerance_liters,
            count_scope_crossings=self.waterfall_count_scope_crossings,
            tax_class_map=TaxClassMap.with_overrides(self.tax_class_overrides),
        )


@cache
def config() -> AppSettings:
    return AppSettings()
