"""Command-line and terminal front ends."""
