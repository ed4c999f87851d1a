"""Provision a Windows developer VM in Azure and configure it over WinRM."""

__version__ = "0.1.0"
