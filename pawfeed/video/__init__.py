"""Video lifecycle: upload, encode hand-off, playback and feed listings."""
