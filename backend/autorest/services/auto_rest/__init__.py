"""
Auto-REST query engine: generic list/get over exposed tables and collections
"""
