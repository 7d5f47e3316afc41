"""Creator Media Pipeline backend application."""
