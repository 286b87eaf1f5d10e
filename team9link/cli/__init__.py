"""CLI module for team9link."""
