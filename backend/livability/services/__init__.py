"""Job scheduling, heat cell storage and background processing."""
