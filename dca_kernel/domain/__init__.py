"""Pure domain values for the kernel. ZERO I/O."""
