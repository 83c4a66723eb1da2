"""
Engine Package
==============
Transition geometry, joggle classification and the position builder.
"""
