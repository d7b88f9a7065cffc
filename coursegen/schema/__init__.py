"""SQLAlchemy models for persisted state."""
