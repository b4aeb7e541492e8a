"""HTTP and WebSocket surface for automation editing sessions."""
