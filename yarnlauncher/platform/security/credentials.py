"""
Hadoop-compatible delegation tokens and credential sets.

Tokens and credentials are serialized exactly as Hadoop's Writable classes
write them, so token files produced here can be read by the JVM application
master and vice-versa:

    Token:       vint(len) identifier | vint(len) password | Text kind | Text service
    Text:        vint(len) utf-8 bytes
    Credentials: b"HDTS" | version byte | vint(#tokens) (Text alias, Token)*
                 | vint(#secrets) (Text alias, vint(len) bytes)*
"""
import base64
import io
import logging
import threading
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

TOKEN_STORAGE_MAGIC = b"HDTS"
TOKEN_STORAGE_VERSION = 0
RM_DELEGATION_TOKEN = "RM_DELEGATION_TOKEN"
HDFS_DELEGATION_TOKEN = "HDFS_DELEGATION_TOKEN"


class CredentialsFormatError(ValueError):
    pass


def write_vlong(out: BinaryIO, value: int) -> None:
    if -112 <= value <= 127:
        out.write(value.to_bytes(1, "big", signed=True))
        return
    length = -112
    if value < 0:
        value ^= -1
        length = -120
    tmp = value
    while tmp != 0:
        tmp >>= 8
        length -= 1
    out.write(length.to_bytes(1, "big", signed=True))
    num_bytes = -(length + 120) if length < -120 else -(length + 112)
    out.write(value.to_bytes(num_bytes, "big"))


def _read_exact(stream: BinaryIO, n: int) -> bytes:
    data = stream.read(n)
    if len(data) != n:
        raise CredentialsFormatError(f"Unexpected end of stream: wanted {n} bytes, got {len(data)}")
    return data


def read_vlong(stream: BinaryIO) -> int:
    first = int.from_bytes(_read_exact(stream, 1), "big", signed=True)
    if first >= -112:
        return first
    size = -119 - first if first < -120 else -111 - first
    value = int.from_bytes(_read_exact(stream, size - 1), "big")
    is_negative = first < -120 or (-112 <= first < 0)
    return value ^ -1 if is_negative else value


def write_bytes_field(out: BinaryIO, data: bytes) -> None:
    write_vlong(out, len(data))
    out.write(data)


def read_bytes_field(stream: BinaryIO) -> bytes:
    length = read_vlong(stream)
    if length < 0:
        raise CredentialsFormatError(f"Negative field length {length}")
    return _read_exact(stream, length)


def write_text(out: BinaryIO, text: str) -> None:
    write_bytes_field(out, text.encode("utf-8"))


def read_text(stream: BinaryIO) -> str:
    return read_bytes_field(stream).decode("utf-8")


class Token(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: bytes = b""
    password: bytes = b""
    kind: str = ""
    service: str = ""

    def write(self, out: BinaryIO) -> None:
        write_bytes_field(out, self.identifier)
        write_bytes_field(out, self.password)
        write_text(out, self.kind)
        write_text(out, self.service)

    @classmethod
    def read(cls, stream: BinaryIO) -> "Token":
        identifier = read_bytes_field(stream)
        password = read_bytes_field(stream)
        kind = read_text(stream)
        service = read_text(stream)
        return cls(identifier=identifier, password=password, kind=kind, service=service)

    def encode_to_url_string(self) -> str:
        buf = io.BytesIO()
        self.write(buf)
        return base64.urlsafe_b64encode(buf.getvalue()).rstrip(b"=").decode("ascii")

    @classmethod
    def decode_from_url_string(cls, url_string: str) -> "Token":
        padded = url_string + "=" * (-len(url_string) % 4)
        try:
            raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        except ValueError as exc:
            raise CredentialsFormatError(f"Invalid token url string: {exc}") from exc
        return cls.read(io.BytesIO(raw))

    def with_service(self, service: str) -> "Token":
        return self.model_copy(update={"service": service})

    def __repr__(self) -> str:
        return f"Token(kind={self.kind!r}, service={self.service!r})"

    __str__ = __repr__


class Credentials:
    """
    A named set of tokens and secret keys. Mutations are guarded by a lock so
    the process-wide set can be shared between the launcher and the token
    refresher thread.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tokens: Dict[str, Token] = {}
        self._secrets: Dict[str, bytes] = {}

    def add_token(self, alias: str, token: Token) -> None:
        with self._lock:
            self._tokens[alias] = token

    def get_token(self, alias: str) -> Optional[Token]:
        with self._lock:
            return self._tokens.get(alias)

    def remove_token(self, alias: str) -> None:
        with self._lock:
            self._tokens.pop(alias, None)

    def add_secret_key(self, alias: str, secret: bytes) -> None:
        with self._lock:
            self._secrets[alias] = secret

    def get_secret_key(self, alias: str) -> Optional[bytes]:
        with self._lock:
            return self._secrets.get(alias)

    def token_items(self) -> List[Tuple[str, Token]]:
        with self._lock:
            return list(self._tokens.items())

    def all_tokens(self) -> List[Token]:
        with self._lock:
            return list(self._tokens.values())

    def has_service(self, service: str) -> bool:
        return any(t.service == service for t in self.all_tokens())

    def add_all(self, other: "Credentials") -> None:
        """Merge `other` into this set; entries of `other` win on alias collision."""
        tokens = other.token_items()
        with other._lock:
            secrets = list(other._secrets.items())
        with self._lock:
            self._tokens.update(tokens)
            self._secrets.update(secrets)

    def copy(self) -> "Credentials":
        creds = Credentials()
        creds.add_all(self)
        return creds

    def write_token_storage(self) -> bytes:
        buf = io.BytesIO()
        buf.write(TOKEN_STORAGE_MAGIC)
        buf.write(bytes([TOKEN_STORAGE_VERSION]))
        with self._lock:
            write_vlong(buf, len(self._tokens))
            for alias, token in self._tokens.items():
                write_text(buf, alias)
                token.write(buf)
            write_vlong(buf, len(self._secrets))
            for alias, secret in self._secrets.items():
                write_text(buf, alias)
                write_bytes_field(buf, secret)
        return buf.getvalue()

    @classmethod
    def read_token_storage(cls, data: bytes) -> "Credentials":
        stream = io.BytesIO(data)
        magic = stream.read(len(TOKEN_STORAGE_MAGIC))
        if magic != TOKEN_STORAGE_MAGIC:
            raise CredentialsFormatError(f"Bad header found in token storage: {magic!r}")
        version = _read_exact(stream, 1)[0]
        if version != TOKEN_STORAGE_VERSION:
            raise CredentialsFormatError(f"Unsupported token storage version {version}")
        creds = cls()
        for _ in range(read_vlong(stream)):
            alias = read_text(stream)
            creds.add_token(alias, Token.read(stream))
        for _ in range(read_vlong(stream)):
            alias = read_text(stream)
            creds.add_secret_key(alias, read_bytes_field(stream))
        return creds

    @classmethod
    def read_token_storage_file(cls, path: Union[Path, str]) -> "Credentials":
        logger.debug(f"Reading token storage file {path}")
        return cls.read_token_storage(Path(path).read_bytes())

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

    def __iter__(self) -> Iterator[Token]:
        return iter(self.all_tokens())

    def __repr__(self) -> str:
        return f"Credentials({self.all_tokens()})"


_current_user_credentials = Credentials()


def current_user_credentials() -> Credentials:
    """The process-wide credential set of the current user."""
    return _current_user_credentials
