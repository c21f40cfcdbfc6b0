"""Command line tool for kargo-core."""
