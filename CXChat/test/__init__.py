"""
Tests for the CXChat server components and HTTP api.
"""
