"""Kokitzu: settlement reconciliation engine for on-chain binary options."""

__version__ = "0.1.0"
__author__ = "Kokitzu Team"

__all__ = ["__version__", "__author__"]
