"""Hashtag search, popularity and suggestions."""
