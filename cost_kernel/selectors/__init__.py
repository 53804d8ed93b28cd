"""Read-only query objects over the unit of work."""
