from __future__ import annotations

import asyncio
from os import PathLike, remove
from pathlib import Path
from typing import Protocol, Union


class YamlStorage(Protocol):
    """Where context YAML blobs are persisted, keyed by ``<item id>.yaml``."""

    async def upload_yaml(self, filename: str, content: str) -> None: ...

    async def delete_yaml(self, filename: str) -> None: ...


class FileManager:
    """Local-directory storage for context YAML files."""

    def __init__(self, directory: Union[str, PathLike]):
        self.__directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self.__directory

    def write_file(self, filename: str, content: bytes) -> None:
        self.__directory.mkdir(parents=True, exist_ok=True)
        with open(self.__directory / filename, "wb") as file:
            file.write(content)

    def read_file(self, filename: str) -> str:
        with open(self.__directory / filename, "r", encoding="utf-8") as file:
            return file.read()

    def delete_file(self, filename: str) -> None:
        remove(self.__directory / filename)

    async def upload_yaml(self, filename: str, content: str) -> None:
        await asyncio.to_thread(self.write_file, filename, content.encode("utf-8"))

    async def delete_yaml(self, filename: str) -> None:
        await asyncio.to_thread(self.delete_file, filename)
