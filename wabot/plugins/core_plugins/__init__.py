"""Built-in commands available to everyone."""
