"""Core domain: errors, enums, models and interfaces."""
