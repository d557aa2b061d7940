"""
Data models for secretmap.

- CloudResource: a discovered cloud resource with its raw configuration
- Typed accessors for reading the untyped configuration bag
"""

from secretmap.models.resource import (
    PROVIDER_AWS,
    PROVIDER_AZURE,
    PROVIDER_GCP,
    CloudResource,
    get_bool,
    get_list,
    get_map,
    get_str,
    iter_maps,
    resource_provider,
)

__all__ = [
    "PROVIDER_AWS",
    "PROVIDER_AZURE",
    "PROVIDER_GCP",
    "CloudResource",
    "get_bool",
    "get_list",
    "get_map",
    "get_str",
    "iter_maps",
    "resource_provider",
]
