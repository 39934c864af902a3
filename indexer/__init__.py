"""Embedding providers and vector storage."""
