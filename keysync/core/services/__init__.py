"""Application services for API key reconciliation."""
