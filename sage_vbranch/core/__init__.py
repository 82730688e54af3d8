"""Repository discovery and daemon bookkeeping."""
