"""Core pipeline: fetcher, manifest builder, lock gate, hermetic build driver."""
