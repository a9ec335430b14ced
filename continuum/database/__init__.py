"""Persistence for Continuum."""

from .manager import DatabaseManager, generate_entity_slug, slugify

__all__ = ["DatabaseManager", "generate_entity_slug", "slugify"]
