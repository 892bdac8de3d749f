"""Configuration, logging and the dashboard session."""
