"""Tenant schema DDL and the runner that applies it."""
