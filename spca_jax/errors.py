from __future__ import annotations


class SchemaError(ValueError):
    """Input table is missing a required column or has ill-paired allele columns."""


class DataQualityError(ValueError):
    """Filtering left nothing to analyse (no samples or no polymorphic loci)."""


class AnalysisError(ValueError):
    """The spatial network or sPCA cannot be computed for the retained samples."""
