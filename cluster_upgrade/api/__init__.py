"""
HTTP gateway for read-only upgrade views.
"""
