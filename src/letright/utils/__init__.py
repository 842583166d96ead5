"""Utility modules for Let Right."""
