"""Console presentation for the devrelbot CLI."""
