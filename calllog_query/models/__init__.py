"""Filter, query and storage models."""
