"""
Shared API components: error codes, exceptions, responses, middleware and
the health router.
"""
