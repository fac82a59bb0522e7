"""Domain models and engine for cellar inventory reconciliation.

This package contains in-memory (Pydantic) models of batches and their volume
events, the per-batch ledger replay, and the two independent period views
(ledger aggregate and regulatory waterfall) that are compared against each
other. They are independent from persistence models so that business logic and
testing can evolve without DB coupling.
"""

__all__ = [
    "aggregator",
    "base_types",
    "eligibility",
    "event_store",
    "events",
    "excise",
    "periods",
    "policy",
    "reconciliation",
    "reconstructor",
    "tax_classes",
    "units",
    "variance",
    "waterfall",
]
