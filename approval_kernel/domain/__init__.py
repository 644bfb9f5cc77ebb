"""Pure domain types for the approval kernel. Zero I/O."""
