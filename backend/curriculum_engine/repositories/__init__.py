"""Session-scoped repositories for the curriculum store."""
