"""
Holder pipeline services.
"""
