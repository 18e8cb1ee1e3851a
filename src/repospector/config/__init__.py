"""Configuration for repospector."""
