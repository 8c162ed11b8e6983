"""divecoach - freediving coaching chat backend.

Note: Import `app` directly from `divecoach.main` to avoid circular imports.
"""

__all__ = ["main", "api", "clients", "core", "models", "observability", "resilience", "services"]
