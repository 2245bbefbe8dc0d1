"""
Shared helpers: exceptions, value serialization and handler decorators.
"""
