"""Fluxus wallet: session keys and the passkey mapping registry."""

__version__ = "0.1.0"
