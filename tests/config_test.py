from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from config import AppSettings
from domain.base_types import Classification, TaxClass


def test_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)

    settings = AppSettings()
    policy = settings.reconciliation_policy()
    filters = settings.waterfall_filters()

    assert settings.db_file == Path("cellar_recon.db")
    assert policy.transfer_derivation_threshold == Decimal("0.9")
    assert policy.packaging_loss_tolerance_liters == Decimal("2")
    assert filters.start_inclusive is False
    assert filters.end_inclusive is True
    assert filters.count_scope_crossings is True


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("RECON_TRANSFER_DERIVATION_THRESHOLD", "0.8")
    monkeypatch.setenv("RECON_WATERFALL_START_INCLUSIVE", "true")
    monkeypatch.setenv("RECON_RECONSTRUCTION_WORKERS", "4")
    monkeypatch.setenv("RECON_TAX_CLASS_OVERRIDES", '{"fortified_blend": "wine_21_to_24", "other": null}')

    settings = AppSettings()
    policy = settings.reconciliation_policy()

    assert settings.reconstruction_workers == 4
    assert policy.transfer_derivation_threshold == Decimal("0.8")
    assert policy.tax_class_map.tax_class_for(Classification.FORTIFIED_BLEND) == TaxClass.WINE_21_TO_24
    assert policy.tax_class_map.tax_class_for(Classification.OTHER) is None
    filters = settings.waterfall_filters()
    assert filters.start_inclusive is True
    assert filters.tax_class_map.tax_class_for(Classification.OTHER) is None


def test_env_file_is_read(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".env").write_text("RECON_OPENING_BALANCE_LITERS=1250.5\nRECON_LOG_LEVEL=DEBUG\n", encoding="utf-8")

    settings = AppSettings()

    assert settings.opening_balance_liters == Decimal("1250.5")
    assert settings.log_level == "DEBUG"
