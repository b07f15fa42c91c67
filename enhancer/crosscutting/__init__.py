"""Crosscutting concerns (config, logging, errors, metrics)."""
