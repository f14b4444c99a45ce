"""Upstream HTTP clients — workflow engine relay and platform API."""

from shopgate.upstream.client import PlatformClient, UpstreamClient, WorkflowRelay

__all__ = ["PlatformClient", "UpstreamClient", "WorkflowRelay"]
