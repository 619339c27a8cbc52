"""Dockhand — sync Docker stack secrets from HashiCorp Vault."""

__version__ = "0.1.0"
