"""Storefront checkout: cart, payment selection, checkout orchestration and order ledger."""

__version__ = "0.1.0"
