"""Condition-based pricing and waterfall calculation engine."""
