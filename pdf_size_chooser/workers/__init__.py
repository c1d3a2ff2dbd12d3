"""Background job state and execution."""
