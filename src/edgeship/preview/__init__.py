"""Live-preview change notification."""
