"""ao-forge command line interface."""
