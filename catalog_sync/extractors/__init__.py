"""Feed parsing and source-meta validation."""
