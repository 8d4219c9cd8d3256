"""Cache-aside repositories layered over the application store."""
