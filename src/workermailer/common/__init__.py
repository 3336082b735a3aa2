"""Shared models, errors, configuration and logging for workermailer."""
