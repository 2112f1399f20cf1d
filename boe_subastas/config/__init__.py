"""Settings loading and the default YAML profile."""
