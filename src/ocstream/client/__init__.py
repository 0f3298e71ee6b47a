"""OpenCode server clients: REST (client.rest) and event stream (client.streaming)."""
