"""Core services: persistence, shared infrastructure, indexing pipeline, tasks."""
