"""Shared helpers for ledgerdesk."""
