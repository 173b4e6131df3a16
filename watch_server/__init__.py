"""Reference websocket signaling relay for watch_peer."""
