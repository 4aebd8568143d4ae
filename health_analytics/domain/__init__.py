"""Domain models and error taxonomy, free of I/O."""
