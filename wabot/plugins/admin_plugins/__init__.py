"""Built-in owner commands."""
