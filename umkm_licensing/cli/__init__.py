"""Command line tools for license operations."""
