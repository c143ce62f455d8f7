"""Terraform-style provisioning for a function backend behind an HTTP API gateway."""

__version__ = "0.1.0"
