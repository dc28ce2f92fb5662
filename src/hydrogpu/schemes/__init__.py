"""Numerical schemes.

Modules:
    slope_limiter   - Flux limiter fragment and limiter names
    base            - Scheme interface
    burgers         - Burgers-split scheme (Euler, MHD)
    roe             - Roe-type characteristic scheme (all equations)
"""
