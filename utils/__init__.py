"""Shared helpers (logging setup)"""
