"""Shared configuration, connections, schemas and models."""
