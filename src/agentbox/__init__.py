"""agentbox: sandboxed agent containers with a synced, firewalled environment."""

__version__ = "0.1.0"
