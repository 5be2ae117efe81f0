from .blob_store import BlobStore, manifest_key
from .spawn_store import GeneratedFile, SpawnRecord, SpawnStore, infer_language

__all__ = ["BlobStore", "GeneratedFile", "SpawnRecord", "SpawnStore", "infer_language", "manifest_key"]
