"""HTTP, WebSocket and SSE transport."""
