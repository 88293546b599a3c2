"""Runtime-specific sandbox implementations."""
