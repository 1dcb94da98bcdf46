"""Remote calendar synchronization: adapter, reconciliation and pull sync."""
