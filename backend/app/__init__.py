"""Cascade intelligence service."""
