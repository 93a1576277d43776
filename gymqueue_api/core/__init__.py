"""Configuration, logging, dependencies and infrastructure glue."""
