"""Domain models for the repository layer."""
