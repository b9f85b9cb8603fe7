"""Canvas model, traversal, context assembly, search and placement."""
