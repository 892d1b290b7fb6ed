"""Video likes."""
