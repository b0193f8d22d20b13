"""Pricing domain: value objects and the pure pricing engine."""
