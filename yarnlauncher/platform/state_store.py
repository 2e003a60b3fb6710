import abc
import json
import logging
from typing import Any, Dict, List, Optional, Union

from .filesystem import FileSystem, join_path

logger = logging.getLogger(__name__)

StateDict = Dict[str, Any]

DATASET_STATE_TABLE_SUFFIX = ".jst"
CURRENT_STATE_NAME = "current"


class StateStoreError(Exception):
    pass


class StateStore(abc.ABC):
    """
    Keyed tables of JSON-serializable state, grouped into named stores.
    Each state dict is identified within its table by its "id" field.
    """

    @abc.abstractmethod
    def put(self, store: str, table: str, value: Union[StateDict, List[StateDict]]) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def get_all(self, store: str, table: str) -> List[StateDict]:
        raise NotImplementedError

    @abc.abstractmethod
    def create_alias(self, store: str, table: str, alias: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def exists(self, store: str, table: str) -> bool:
        raise NotImplementedError

    def get(self, store: str, table: str, key: Optional[str] = None) -> Optional[StateDict]:
        """Return the state with id `key`, or the first state of the table if key is None"""
        if not self.exists(store, table):
            return None
        for state in self.get_all(store, table):
            if key is None or state.get("id") == key:
                return state
        return None

    @staticmethod
    def _sanitize_urn(dataset_urn: Optional[str]) -> str:
        return (dataset_urn or "").replace(":", ".")

    @classmethod
    def dataset_table_name(cls, dataset_urn: Optional[str], job_id: str) -> str:
        urn = cls._sanitize_urn(dataset_urn)
        stem = f"{urn}-{job_id}" if urn else job_id
        return stem + DATASET_STATE_TABLE_SUFFIX

    @classmethod
    def current_table_name(cls, dataset_urn: Optional[str]) -> str:
        return cls.dataset_table_name(dataset_urn, CURRENT_STATE_NAME)

    def persist_dataset_state(self, store: str, dataset_urn: Optional[str], job_id: str, state: StateDict) -> str:
        table = self.dataset_table_name(dataset_urn, job_id)
        logger.info(f"Persisting {table} to the job state store")
        self.put(store, table, state)
        self.create_alias(store, table, self.current_table_name(dataset_urn))
        return table

    def get_latest_dataset_state(self, store: str, dataset_urn: Optional[str]) -> Optional[StateDict]:
        return self.get(store, self.current_table_name(dataset_urn))


class FileSystemStateStore(StateStore):
    """Tables are JSON files at `<root_dir>/<store>/<table>` on a FileSystem"""

    def __init__(self, fs: FileSystem, root_dir: str) -> None:
        self.fs = fs
        self.root_dir = root_dir

    def _path(self, store: str, table: str) -> str:
        return join_path(self.root_dir, store, table)

    def put(self, store: str, table: str, value: Union[StateDict, List[StateDict]]) -> None:
        states = value if isinstance(value, list) else [value]
        self.fs.mkdirs(join_path(self.root_dir, store))
        data = json.dumps(states, indent=2, sort_keys=True).encode("utf-8")
        self.fs.write_bytes(self._path(store, table), data, overwrite=True)

    def get_all(self, store: str, table: str) -> List[StateDict]:
        try:
            raw = self.fs.read_bytes(self._path(store, table))
        except FileNotFoundError:
            return []
        try:
            states = json.loads(raw)
        except ValueError as exc:
            raise StateStoreError(f"Corrupt state table {store}/{table}: {exc}") from exc
        if not isinstance(states, list):
            raise StateStoreError(f"State table {store}/{table} is not a list")
        return states

    def create_alias(self, store: str, table: str, alias: str) -> None:
        src = self._path(store, table)
        if not self.fs.exists(src):
            raise StateStoreError(f"Cannot alias missing table {store}/{table}")
        self.fs.write_bytes(self._path(store, alias), self.fs.read_bytes(src), overwrite=True)

    def exists(self, store: str, table: str) -> bool:
        return self.fs.exists(self._path(store, table))
