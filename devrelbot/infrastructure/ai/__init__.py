"""AI provider clients that meter their spend."""
