"""Video comments with one level of replies."""
