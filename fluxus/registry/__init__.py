from .local_store import EncryptedMappingStore, LocalStorage, WalletMappingRecord
from .remote_client import RemoteMappingRegistry
from .server_store import (
    MappingFailure,
    MappingResult,
    PasskeyMappingDatabase,
    get_passkey_mapping_database,
)

__all__ = [
    "EncryptedMappingStore",
    "LocalStorage",
    "WalletMappingRecord",
    "RemoteMappingRegistry",
    "MappingFailure",
    "MappingResult",
    "PasskeyMappingDatabase",
    "get_passkey_mapping_database",
]
