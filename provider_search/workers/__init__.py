"""Long-running workers for provider search."""
