"""GitHub Actions Runner Controller setup, cleanup and diagnostics."""
