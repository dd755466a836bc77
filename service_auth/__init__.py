"""
Auth service for the Access Layer.
"""
