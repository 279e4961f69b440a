"""Data models: hosts, enums and remote service responses."""
