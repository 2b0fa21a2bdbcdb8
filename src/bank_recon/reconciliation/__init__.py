"""Reconciliation sessions: variance, reconciling items and the service."""

from .variance import VarianceBreakdown, VarianceCalculator
from .items import ReconcilingItemManager

__all__ = ["VarianceBreakdown", "VarianceCalculator", "ReconcilingItemManager"]
