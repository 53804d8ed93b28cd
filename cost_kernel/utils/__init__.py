"""Kernel utilities (deterministic hashing)."""
