"""Serialization and storage of insight chunks."""
