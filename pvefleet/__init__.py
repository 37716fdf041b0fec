"""Proxmox VE fleet operations core."""

__version__ = "0.1.0"
