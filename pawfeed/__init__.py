"""Short-video feed backend: uploads, HLS encoding, streaming and engagement."""

__version__ = "0.1.0"
