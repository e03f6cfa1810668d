"""
Core Package
"""
