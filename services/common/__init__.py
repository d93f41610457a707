"""
Common utilities and configurations for Haven services.
"""
