"""Domain types, identity and errors."""
