"""
Shared infrastructure: base models, caching, logging, errors and DRF glue.
"""
