"""Shared helpers for tabconsole."""
