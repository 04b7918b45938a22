"""Unpack WeChat mini program packages and scan them for leaks."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("wxapkg-audit")
except PackageNotFoundError:  # pragma: no cover - source tree without installed metadata
    __version__ = "0.0.0-dev"

from wxapkg_audit.decompiler import Decompiler, RunState, run_batch  # noqa: E402

__all__ = ["Decompiler", "RunState", "__version__", "run_batch"]
