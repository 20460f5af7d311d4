"""Bookstores service: stores, books and per-store SKU inventory."""
