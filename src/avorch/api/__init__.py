"""HTTP API for avorch."""
