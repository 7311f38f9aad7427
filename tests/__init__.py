"""
Tests package - Unit test suite for the Jwker operator.

Contains:
- unit/: Unit tests for individual components, run against in-memory
  Kubernetes clients and a mock broker transport
"""
