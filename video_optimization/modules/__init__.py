"""Feature modules, one package per group of endpoints."""
