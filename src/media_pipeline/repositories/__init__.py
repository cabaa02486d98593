"""Repositories wrapping the SQL session store."""
