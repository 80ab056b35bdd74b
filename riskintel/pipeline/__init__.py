"""Scan pipeline orchestration."""

from .scanner import (
    ClassificationStats,
    RiskIntelligenceScanner,
    ScanContext,
    ScannerDependencies,
    ScanSummary,
    run_scan,
)

__all__ = [
    "ClassificationStats",
    "RiskIntelligenceScanner",
    "ScanContext",
    "ScanSummary",
    "ScannerDependencies",
    "run_scan",
]
