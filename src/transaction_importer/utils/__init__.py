"""Utility helpers for dates, amounts, logging, and output sanitization."""
