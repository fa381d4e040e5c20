"""Language server for FQL scripts."""
