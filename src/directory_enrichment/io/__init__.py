"""I/O layer: connectors to external directory services."""
