"""taskward core: errors, settings, ORM and the scheduler."""
