"""Chain access: JSON-RPC client and read-only data aggregation."""
