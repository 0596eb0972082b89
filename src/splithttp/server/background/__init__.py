"""Server background tasks."""
