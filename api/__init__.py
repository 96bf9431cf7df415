"""StroyManager API package."""
