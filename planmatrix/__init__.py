"""
planmatrix - Role/plan feature visibility from a remote plans matrix

Layers:
1. Config Service - fetch, cache and serve the plans matrix
2. Access Service - resolve visible features per (acting, target, plan)
"""

__version__ = "1.0.0"
