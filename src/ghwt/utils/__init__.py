"""Utility helpers for ghwt."""
