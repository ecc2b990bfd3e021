"""regops command-line interface."""
