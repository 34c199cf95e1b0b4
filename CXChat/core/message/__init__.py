"""Wire events and persisted record types."""
