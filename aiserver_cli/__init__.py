"""Provision a single-board computer as a self-hosted AI inference server."""

__version__ = "0.1.0"
