"""Generative AI transform stage and provider implementations."""
