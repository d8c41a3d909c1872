"""NSX-T Policy API Mock for Testing.

In-memory implementation of the policy API endpoints used by the catalog,
so tasks and runs can be tested without an NSX-T manager.

Key Features:
- Path-keyed object store with cursor pagination
- Realized-state simulation for IP address allocations (delay, error)
- Referential integrity on delete (children and path references)
- Error injection for failure scenarios
- Call log for ordering assertions

Usage:
    from nsx_mock import MockPolicyTransport

    transport = MockPolicyTransport(page_size=2)
    transport.seed_shared_objects()
    catalog = Catalog(transport)
"""

from .context import MockNsxContext
from .transport import FakeClock, MockHttpResponse, MockPolicyTransport, api_error

__all__ = [
    "FakeClock",
    "MockHttpResponse",
    "MockNsxContext",
    "MockPolicyTransport",
    "api_error",
]
