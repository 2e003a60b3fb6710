from .credentials import (
    HDFS_DELEGATION_TOKEN,
    RM_DELEGATION_TOKEN,
    Credentials,
    CredentialsFormatError,
    Token,
    current_user_credentials,
)

__all__ = [
    "Credentials",
    "CredentialsFormatError",
    "Token",
    "current_user_credentials",
    "HDFS_DELEGATION_TOKEN",
    "RM_DELEGATION_TOKEN",
]
