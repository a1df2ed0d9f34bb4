"""Deployment configuration for the Zuino services infrastructure."""
