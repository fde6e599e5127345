"""
EC2 query-protocol connection.
"""
from typing import Any, Dict, Optional

from ..connection import Connection

EC2_HOST = 'ec2.amazonaws.com'
EC2_API_VERSION = '2011-12-15'


class EC2(Connection):
    """Thin EC2 facade: each method is one signed query-protocol action."""

    def __init__(self, access_key_id: str, secret_access_key: str, host: Optional[str] = None, **kwargs):
        kwargs.setdefault('name', 'EC2')
        region = kwargs.get('region')
        if host is None:
            host = f"ec2.{region}.amazonaws.com" if region else EC2_HOST
        super().__init__(access_key_id, secret_access_key, host, EC2_API_VERSION, **kwargs)

    async def describe_availability_zones(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.make_request('DescribeAvailabilityZones', params)

    async def describe_regions(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.make_request('DescribeRegions', params)

    async def describe_instances(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.make_request('DescribeInstances', params)
