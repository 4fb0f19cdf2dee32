"""Service layer for the pricing engine."""
