"""Stripe webhook gateway."""
