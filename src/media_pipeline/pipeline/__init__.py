"""Per-format pipeline orchestration."""
