"""Kubernetes operator keeping pools of self-hosted CI runners in band."""

__version__ = "0.1.0"
