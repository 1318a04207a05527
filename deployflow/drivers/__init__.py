"""Concrete collaborators behind the kernel ports."""
