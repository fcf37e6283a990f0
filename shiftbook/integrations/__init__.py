"""Outbound integrations. All remote authority traffic goes through sync_gateway."""
