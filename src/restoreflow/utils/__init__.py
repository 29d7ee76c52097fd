"""Utility modules for restoreflow."""
