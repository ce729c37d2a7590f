"""Domain models for the API key management context."""
