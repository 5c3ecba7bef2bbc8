"""Shared configuration, logging, errors and metrics."""
