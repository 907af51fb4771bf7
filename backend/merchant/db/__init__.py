"""Database package — declarative base and session factories."""
