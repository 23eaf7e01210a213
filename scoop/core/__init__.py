"""Curation engine components."""
