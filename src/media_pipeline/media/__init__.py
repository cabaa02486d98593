"""Blob storage for captured inputs, overlays and rendered results."""
