"""Document store abstraction and implementations."""
