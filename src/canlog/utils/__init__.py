"""
Signal decoding and database loaders
"""
