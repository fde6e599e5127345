"""
Service connections built on the query-protocol request path.
"""
from .ec2 import EC2

__all__ = ["EC2"]
