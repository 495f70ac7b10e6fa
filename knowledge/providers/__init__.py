"""Concrete adapters behind the interfaces in :mod:`knowledge.interfaces`."""
