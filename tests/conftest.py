import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = PROJECT_ROOT / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

APPID = "wx0123456789abcdef"


@pytest.fixture
def members() -> list[tuple[str, bytes]]:
    return [
        ("/app-config.json", b'{"pages": ["pages/index/index"]}'),
        ("/app-service.js", b'var api = "https://api.example.com/v1/login?from=app";\n' + b"x" * 2048),
        ("/pages/index/index.wxml", b"<view>hello</view>"),
        ("/static/logo.png", bytes(range(256)) * 4),
        ("/empty.txt", b""),
    ]


@pytest.fixture
def package_dir(tmp_path: Path) -> Path:
    folder = tmp_path / "packages" / APPID
    folder.mkdir(parents=True)
    return folder
