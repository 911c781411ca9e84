"""taskward framework utilities (logging)."""
