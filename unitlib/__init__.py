"""
Reconciliation of generated systemd units with installed packages, and lifecycle control of their
services across the system and per-user service managers.
"""
