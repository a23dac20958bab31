"""Models — enums, schemas and the per-session state."""
