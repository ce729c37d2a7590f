"""Console display adapter built on rich."""
