"""Service layer for the limiter."""
