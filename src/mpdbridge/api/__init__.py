"""API layer for talking to MPD over its line protocol."""
