"""Session domain models and polling endpoints."""
