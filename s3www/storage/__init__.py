"""Object store clients."""

from .base import ObjectInfo, ObjectStore, ObjectStream
from .s3 import S3ObjectStore, region_from_endpoint

__all__ = ["ObjectInfo", "ObjectStore", "ObjectStream", "S3ObjectStore", "region_from_endpoint"]
