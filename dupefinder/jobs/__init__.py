"""Background population jobs."""
