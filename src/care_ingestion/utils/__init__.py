"""
Shared utilities: logging setup and the exception taxonomy.
"""
