"""FastAPI application, configuration, logging, metrics and relay."""
