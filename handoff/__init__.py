"""Task routing and handoff workflow engine."""
