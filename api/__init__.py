"""MODE OS HTTP API."""
