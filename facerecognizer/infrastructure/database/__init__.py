"""Relational storage for the identity registry."""
