"""Kernel services -- flush-only persistence services and collaborator ports."""
