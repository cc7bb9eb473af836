"""Convenience scoring: category table, pure scoring engine and batch calculator."""
