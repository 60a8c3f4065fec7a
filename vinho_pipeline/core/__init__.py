"""Core domain models, enums, errors and configuration."""
