"""Real-time task notification backend."""
