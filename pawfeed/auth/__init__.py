"""Bearer-token authentication for feed endpoints."""
