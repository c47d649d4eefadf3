"""Aggregate model imports for metadata creation."""

from openshop.models.draft import DraftSlot  # noqa: F401
