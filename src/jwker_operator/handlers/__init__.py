"""
Handlers package - Contains the Kopf event handlers for Jwker resources.

- jwker.py: Jwker resource reconciliation and deletion
"""
