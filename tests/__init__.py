"""
Tests package - Test suite for the Vault CRD operator.

Contains:
- unit/: Unit tests for individual components
"""
