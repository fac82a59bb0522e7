from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from .base_types import Classification, TaxClass

SPIRITS_TAX_CLASSES: frozenset[TaxClass] = frozenset({TaxClass.APPLE_BRANDY, TaxClass.GRAPE_SPIRITS})

# None marks a classification that is not a taxable product (juice).
DEFAULT_CLASSIFICATION_TAX_CLASSES: dict[Classification, TaxClass | None] = {
    Classification.BASE_FERMENT: TaxClass.HARD_CIDER,
    Classification.SECONDARY_FERMENT: TaxClass.HARD_CIDER,
    Classification.FORTIFIED_BLEND: TaxClass.WINE_16_TO_21,
    Classification.JUICE_ONLY: None,
    Classification.DISTILLATE_RESULT: TaxClass.APPLE_BRANDY,
    Classification.OTHER: TaxClass.HARD_CIDER,
}

FALLBACK_TAX_CLASS = TaxClass.HARD_CIDER


class TaxClassMap(BaseModel):
    """Lookup from product classification to regulatory tax class.

    Spirits classes are reported separately and stay out of the primary
    (wine premises) volume figures.
    """

    model_config = ConfigDict(frozen=True)

    mapping: dict[Classification, TaxClass | None] = Field(
        default_factory=lambda: dict(DEFAULT_CLASSIFICATION_TAX_CLASSES)
    )
    spirits_classes: frozenset[TaxClass] = SPIRITS_TAX_CLASSES

    @classmethod
    def with_overrides(cls, overrides: dict[Classification, TaxClass | None]) -> TaxClassMap:
        mapping = dict(DEFAULT_CLASSIFICATION_TAX_CLASSES)
        mapping.update(overrides)
        return cls(mapping=mapping)

    def tax_class_for(self, classification: Classification) -> TaxClass | None:
        return self.mapping.get(classification, FALLBACK_TAX_CLASS)

    def is_spirits(self, tax_class: TaxClass | None) -> bool:
        return tax_class is not None and tax_class in self.spirits_classes

    def is_primary(self, classification: Classification) -> bool:
        tax_class = self.tax_class_for(classification)
        return tax_class is not None and not self.is_spirits(tax_class)
