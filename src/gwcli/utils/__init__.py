"""Shared helpers for gwcli."""
