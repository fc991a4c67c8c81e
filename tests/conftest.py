from pathlib import Path
from typing import Callable

import pytest

from .util import PortablePdbBuilder


@pytest.fixture
def builder() -> PortablePdbBuilder:
    return PortablePdbBuilder()


@pytest.fixture
def write_pdb(tmp_path: Path) -> Callable[[PortablePdbBuilder], Path]:
    def _write(builder: PortablePdbBuilder, name: str = "test.pdb") -> Path:
        path = tmp_path / name
        path.write_bytes(builder.build())
        return path

    return _write
