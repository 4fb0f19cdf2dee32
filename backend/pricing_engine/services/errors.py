"""Typed failures raised by the pricing engine."""

from __future__ import annotations


class PricingError(RuntimeError):
    """Base class for pricing engine failures."""

    code = "pricing_error"


class FormulaError(PricingError):
    """Raised when a formula is malformed, unsafe or evaluates to a non-finite value."""

    code = "formula_error"


class DimensionTypeError(PricingError):
    """Raised when a numeric operator meets a non-numeric value."""

    code = "dimension_type_error"


class MissingContextError(PricingError):
    """Raised when a rule references a dimension the context does not carry."""

    code = "missing_context"


class ScaleOverlapAmbiguity(PricingError):
    """More than one scale tier contains the probe value; the first one wins."""

    code = "scale_overlap"


class RepositoryError(PricingError):
    """Raised when the condition store cannot provide a snapshot."""

    code = "repository_error"


class CatalogError(PricingError):
    """Raised when the product catalog cannot be reached."""

    code = "catalog_error"
