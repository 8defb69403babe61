"""
Application services built on the access engine.
"""
