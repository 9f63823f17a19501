"""Cluster credential handling and Kubernetes client construction."""
