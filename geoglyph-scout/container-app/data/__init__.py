"""Bundled candidate point table (candidates.csv)."""
