"""Buyer-side side-effect records (cart, loyalty points, notifications)."""
