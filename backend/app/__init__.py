"""Backend service package."""
