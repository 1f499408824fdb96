"""Beauty dupe finder: product resolution pipeline."""
