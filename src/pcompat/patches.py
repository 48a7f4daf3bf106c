"""Ordered, directory-backed collection of named patch files."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Sequence, Tuple

PATCH_SUFFIX = ".patch"


class MissingArtifact(LookupError):
    """Raised when a patch name has no file in the patch directory."""

    def __init__(self, name: str, directory: Path) -> None:
        super().__init__(f"Patch {name!r} not found in {directory}")
        self.name = name
        self.directory = directory


@dataclass(slots=True)
class PatchArtifact:
    """A named diff on disk; content is read on first access."""

    name: str
    path: Path
    _content: bytes | None = field(default=None, repr=False, compare=False)

    @property
    def content(self) -> bytes:
        if self._content is None:
            self._content = self.path.read_bytes()
        return self._content

    def __hash__(self) -> int:
        return hash(self.name)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PatchArtifact):
            return NotImplemented
        return self.name == other.name


class PatchSet:
    """Patch names in application order, resolved against ``directory``."""

    def __init__(self, directory: Path | str, names: Sequence[str]) -> None:
        self.directory = Path(directory).expanduser().resolve()
        self.names: Tuple[str, ...] = tuple(names)

    @classmethod
    def discover(cls, directory: Path | str) -> "PatchSet":
        """Build a set from every ``*.patch`` file in ``directory``, sorted by name."""

        root = Path(directory).expanduser()
        names = sorted(path.name for path in root.glob(f"*{PATCH_SUFFIX}") if path.is_file())
        return cls(root, names)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)

    def _path_for(self, name: str) -> Path:
        candidate = (self.directory / name).resolve()
        # Names such as "../x.patch" must not escape the patch directory.
        if candidate.parent != self.directory:
            raise MissingArtifact(name, self.directory)
        return candidate

    def contains(self, name: str) -> bool:
        try:
            return self._path_for(name).is_file()
        except MissingArtifact:
            return False

    def load(self, name: str) -> PatchArtifact:
        """Return the artifact for ``name`` or raise :class:`MissingArtifact`."""

        path = self._path_for(name)
        if not path.is_file():
            raise MissingArtifact(name, self.directory)
        return PatchArtifact(name=name, path=path)

    def get(self, name: str) -> PatchArtifact | None:
        try:
            return self.load(name)
        except MissingArtifact:
            return None

    def inventory(self) -> List[Tuple[str, bool]]:
        """``(name, present)`` pairs in application order."""

        return [(name, self.contains(name)) for name in self.names]


__all__ = ["MissingArtifact", "PATCH_SUFFIX", "PatchArtifact", "PatchSet"]
