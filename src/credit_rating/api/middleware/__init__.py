"""Credit rating API middleware."""
