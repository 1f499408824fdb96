"""Resolution pipeline logic."""
