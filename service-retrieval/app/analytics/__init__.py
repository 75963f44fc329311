"""Query analytics recording."""
