"""
planmatrix Services

2-layer service architecture:
1. Config Service - Remote sync, local cache, fallback (Layer 1)
2. Access Service - Feature visibility resolution and publishing (Layer 2)
"""
