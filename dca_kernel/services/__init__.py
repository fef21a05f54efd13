"""Kernel services - imperative shell over the kernel models."""
