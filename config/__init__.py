"""Configuration loading (YAML + .env) and validation."""
