"""Shared utilities: telemetry and datetime helpers. No business logic."""
