from .metadata import SuspensionMetadataManager, METADATA_KEYS

__all__ = ["SuspensionMetadataManager", "METADATA_KEYS"]
