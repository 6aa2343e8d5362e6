from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)


@dataclass
class StoragePaths:
    root: Path

    def title_dir(self, title_number: int) -> Path:
        return self.root / "titles" / str(title_number)

    def current_xml_path(self, title_number: int) -> Path:
        return self.title_dir(title_number) / "current.xml"

    def versions_dir(self, title_number: int) -> Path:
        return self.title_dir(title_number) / "versions"

    def version_xml_path(self, title_number: int, version_date: date) -> Path:
        return self.versions_dir(title_number) / f"{version_date.isoformat()}.xml"


class LocalTitleStorage:
    """
    Manages the filesystem layout for title XML: the current text of each
    title plus one file per imported historical version.
    """

    def __init__(self, storage_paths: StoragePaths):
        self.paths = storage_paths

    def ensure_base_dirs(self, title_number: int) -> None:
        self.paths.versions_dir(title_number).mkdir(parents=True, exist_ok=True)

    def save_title_xml(self, title_number: int, content: Union[str, bytes]) -> Path:
        self.ensure_base_dirs(title_number)
        target = self.paths.current_xml_path(title_number)
        _write(target, content)
        return target

    def read_title_xml(self, title_number: int) -> bytes:
        path = self.paths.current_xml_path(title_number)
        if not path.exists():
            raise FileNotFoundError(f"Title XML not found at {path}")
        return path.read_bytes()

    def save_version_xml(self, title_number: int, version_date: date, content: Union[str, bytes]) -> Path:
        self.ensure_base_dirs(title_number)
        target = self.paths.version_xml_path(title_number, version_date)
        _write(target, content)
        return target

    def read_version_xml(self, title_number: int, version_date: date) -> bytes:
        path = self.paths.version_xml_path(title_number, version_date)
        if not path.exists():
            raise FileNotFoundError(f"Title {title_number} version {version_date.isoformat()} not found at {path}")
        return path.read_bytes()

    def version_exists(self, title_number: int, version_date: date) -> bool:
        return self.paths.version_xml_path(title_number, version_date).exists()

    def list_version_dates(self, title_number: int) -> List[date]:
        versions_dir = self.paths.versions_dir(title_number)
        if not versions_dir.exists():
            return []
        dates = []
        for path in versions_dir.glob("*.xml"):
            try:
                dates.append(date.fromisoformat(path.stem))
            except ValueError:
                logger.warning("Ignoring unexpected version file %s", path)
        return sorted(dates)

    def delete_title(self, title_number: int) -> None:
        shutil.rmtree(self.paths.title_dir(title_number), ignore_errors=True)


def _write(target: Path, content: Union[str, bytes]) -> None:
    if isinstance(content, str):
        target.write_text(content, encoding="utf-8")
    else:
        target.write_bytes(content)
