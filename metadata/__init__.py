from metadata.local_probe import probe_metadata

__all__ = ["probe_metadata"]
