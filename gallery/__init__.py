"""Couples gallery backend: quota-enforcing photo metadata service."""
