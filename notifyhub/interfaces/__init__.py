"""External interfaces: HTTP API and command line."""
