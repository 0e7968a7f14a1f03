"""Configuration, error taxonomy and money helpers."""
