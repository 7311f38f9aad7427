"""
Utils package - Utility modules for Jwker operator functionality.

Contains helper modules for:
- Key material generation and key set assembly
- Token broker client registration
- Kubernetes runtime inventory and managed secrets
- Synchronization fingerprinting and retry policies
"""
