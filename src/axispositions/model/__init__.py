"""
Model Package
=============
Coil map index, position records and their persistence.
"""
