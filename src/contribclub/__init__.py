"""Aggregated GitHub organization stats, blog posts and reactions for contrib.club."""

__version__ = "0.1.0"
