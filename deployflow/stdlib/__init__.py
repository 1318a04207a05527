"""Standard adapters, libraries and observers."""
