"""Native face model adapters."""
