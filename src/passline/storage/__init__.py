"""Local persistence: preference store and credential cache."""

from passline.storage.credentials import (
    CREDENTIALS_KEY,
    CredentialStore,
    decode_credentials,
    encode_credentials,
)
from passline.storage.prefs import (
    JsonFilePreferenceStore,
    MemoryPreferenceStore,
    PreferenceEditor,
    PreferenceStore,
)

__all__ = [
    "CREDENTIALS_KEY",
    "CredentialStore",
    "encode_credentials",
    "decode_credentials",
    "PreferenceStore",
    "PreferenceEditor",
    "MemoryPreferenceStore",
    "JsonFilePreferenceStore",
]
