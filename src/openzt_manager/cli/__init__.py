"""`openzt` command-line client."""
