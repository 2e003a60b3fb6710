from pydantic import BaseModel, ConfigDict


class FileStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    is_dir: bool = False
    length: int = 0
    modification_time: int = 0

    @property
    def name(self) -> str:
        return self.path.rstrip("/").rsplit("/", 1)[-1]
