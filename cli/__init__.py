"""Command-line driver for the updater."""
