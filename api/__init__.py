"""HTTP API for the bulk invoice builder."""
