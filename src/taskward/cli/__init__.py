"""taskward command-line interface."""
