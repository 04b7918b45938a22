import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from wxapkg_audit.cli import EXIT_CORRUPT, EXIT_CRYPTO, EXIT_SUCCESS, EXIT_USAGE, cli, main
from wxapkg_audit.container.format import decode_container, encode_container
from wxapkg_audit.crypto.envelope import encrypt

APPID = "wx0123456789abcdef"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _write_tree(root: Path) -> None:
    (root / "pages").mkdir(parents=True)
    (root / "app-service.js").write_text(
        "wx.request({url: 'https://api.example.com/v1/order?id=1'}); // mail ops@example.com",
        encoding="utf-8",
    )
    (root / "pages" / "index.wxml").write_text("<view>'/static/banner.png'</view>", encoding="utf-8")


def test_cli_pack_then_scan(tmp_path: Path, runner: CliRunner, package_dir: Path) -> None:
    source = tmp_path / "src"
    _write_tree(source)
    package = package_dir / "__APP__.wxapkg"

    result = runner.invoke(cli, ["pack", str(source), str(package)])
    assert result.exit_code == EXIT_SUCCESS
    assert [e.name for e in decode_container(package.read_bytes())] == ["/app-service.js", "/pages/index.wxml"]

    report = tmp_path / "report.json"
    result = runner.invoke(
        cli,
        ["scan", str(package_dir), "--output", str(tmp_path / "out"), "--no-lookup", "--json", str(report)],
    )

    assert result.exit_code == EXIT_SUCCESS, result.output
    assert "Processed 1 package(s)." in result.output
    assert (tmp_path / "out" / APPID / "pages" / "index.wxml").exists()
    document = json.loads(report.read_text(encoding="utf-8"))
    assert document[0]["appid"] == APPID
    assert document[0]["kind"] == "main"
    assert document[0]["state"] == "done"
    assert [e["endpoint"] for e in document[0]["endpoints"]] == ["https://api.example.com/v1/order?id=1"]
    assert document[0]["sensitive"] == [
        {"file": "/app-service.js", "category": "Email address", "content": "ops@example.com"}
    ]


def test_cli_scan_uses_output_envvar(
    tmp_path: Path, runner: CliRunner, package_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("WXAUDIT_OUTPUT", str(tmp_path / "env-out"))
    package = package_dir / "__APP__.wxapkg"
    package.write_bytes(encrypt(APPID, encode_container([("/a.js", b"'/api/x'" + b" " * 2000)])))

    result = runner.invoke(cli, ["scan", str(package), "--no-lookup"])

    assert result.exit_code == EXIT_SUCCESS, result.output
    assert (tmp_path / "env-out" / APPID / "a.js").exists()


def test_cli_scan_with_pattern_file(tmp_path: Path, runner: CliRunner, package_dir: Path) -> None:
    package = package_dir / "__APP__.wxapkg"
    package.write_bytes(encode_container([("/a.js", b"call('/v2/orders') tok_abc123")]))
    patterns = tmp_path / "patterns.json"
    patterns.write_text(
        json.dumps({"apiRegex": r"'(/v\d/[a-z]+)'", "sensitiveRegexMap": {"Token": "tok_[a-z0-9]+"}}),
        encoding="utf-8",
    )
    report = tmp_path / "report.json"

    result = runner.invoke(
        cli,
        [
            "scan",
            str(package),
            "--output",
            str(tmp_path / "out"),
            "--config",
            str(patterns),
            "--no-lookup",
            "--json",
            str(report),
        ],
    )

    assert result.exit_code == EXIT_SUCCESS, result.output
    document = json.loads(report.read_text(encoding="utf-8"))
    assert [e["endpoint"] for e in document[0]["endpoints"]] == ["/v2/orders"]
    assert [s["category"] for s in document[0]["sensitive"]] == ["Token"]


def test_cli_scan_invalid_regex(tmp_path: Path, runner: CliRunner, package_dir: Path) -> None:
    package = package_dir / "__APP__.wxapkg"
    package.write_bytes(encode_container([("/a.js", b"x")]))

    result = runner.invoke(
        cli, ["scan", str(package), "--output", str(tmp_path / "out"), "--no-lookup", "--endpoint-regex", "(bad"]
    )

    assert result.exit_code == EXIT_USAGE
    assert "Invalid pattern" in result.output
    assert not (tmp_path / "out").exists()


def test_cli_scan_without_packages(tmp_path: Path, runner: CliRunner) -> None:
    empty = tmp_path / "empty"
    empty.mkdir()

    result = runner.invoke(cli, ["scan", str(empty), "--output", str(tmp_path / "out"), "--no-lookup"])

    assert result.exit_code == EXIT_USAGE


def test_cli_scan_reports_failed_packages(tmp_path: Path, runner: CliRunner, package_dir: Path) -> None:
    (package_dir / "__APP__.wxapkg").write_bytes(b"garbage" * 50)

    result = runner.invoke(cli, ["scan", str(package_dir), "--output", str(tmp_path / "out"), "--no-lookup"])

    assert result.exit_code == EXIT_CORRUPT
    assert "could not be unpacked" in result.output


def test_cli_decrypt(tmp_path: Path, runner: CliRunner, package_dir: Path) -> None:
    plaintext = encode_container([("/a.js", b"a" * 2000)])
    package = package_dir / "__APP__.wxapkg"
    package.write_bytes(encrypt(APPID, plaintext))

    result = runner.invoke(cli, ["decrypt", str(package)])

    assert result.exit_code == EXIT_SUCCESS, result.output
    assert (package_dir / "__APP___decrypted.wxapkg").read_bytes() == plaintext


def test_cli_decrypt_with_explicit_appid(tmp_path: Path, runner: CliRunner) -> None:
    plaintext = encode_container([("/a.js", b"a" * 2000)])
    package = tmp_path / "pkg.wxapkg"
    package.write_bytes(encrypt(APPID, plaintext))
    target = tmp_path / "out" / "plain.wxapkg"

    result = runner.invoke(cli, ["decrypt", str(package), str(target), "--appid", APPID])

    assert result.exit_code == EXIT_SUCCESS, result.output
    assert target.read_bytes() == plaintext


def test_cli_decrypt_plaintext_package(tmp_path: Path, runner: CliRunner, package_dir: Path) -> None:
    package = package_dir / "__APP__.wxapkg"
    package.write_bytes(encode_container([("/a.js", b"a")]))

    result = runner.invoke(cli, ["decrypt", str(package), str(tmp_path / "out.wxapkg")])

    assert result.exit_code == EXIT_CRYPTO
    assert not (tmp_path / "out.wxapkg").exists()


def test_cli_unpack(tmp_path: Path, runner: CliRunner, members: list[tuple[str, bytes]], package_dir: Path) -> None:
    package = package_dir / "sub.wxapkg"
    package.write_bytes(encrypt(APPID, encode_container(members)))
    target = tmp_path / "unpacked"

    result = runner.invoke(cli, ["unpack", str(package), str(target), "--workers", "3"])

    assert result.exit_code == EXIT_SUCCESS, result.output
    for name, content in members:
        assert (target / name.lstrip("/")).read_bytes() == content


def test_cli_unpack_corrupt_package(tmp_path: Path, runner: CliRunner) -> None:
    package = tmp_path / "broken.wxapkg"
    package.write_bytes(b"\xbe" + bytes(12) + b"\xed" + bytes(4))

    result = runner.invoke(cli, ["unpack", str(package), str(tmp_path / "out")])

    assert result.exit_code == EXIT_CORRUPT


def test_main_returns_exit_code(tmp_path: Path) -> None:
    source = tmp_path / "src"
    _write_tree(source)

    assert main(["pack", str(source), str(tmp_path / "out.wxapkg")]) == EXIT_SUCCESS
    assert main(["decrypt", str(tmp_path / "out.wxapkg"), "--appid", APPID]) == EXIT_CRYPTO
