"""Command-line console for mcplex."""
