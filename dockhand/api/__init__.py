"""HTTP API for Vault settings and secret sync."""
