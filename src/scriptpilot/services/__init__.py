"""Service layer helpers (backing store, settings)."""
