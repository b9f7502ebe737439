"""Utility helpers for DataQL."""
