"""Tests for configuration loading and the command line application"""

import io

import pytest
from rich.console import Console

import crawler_app
from crawler_app import CrawlerApp, load_config, parse_args
from crawler_core import CrawlReport
from crawler_main import CrawlerConfig


@pytest.fixture
def no_config_file(tmp_path):
    return str(tmp_path / "absent.yaml")


def test_defaults(no_config_file):
    args = parse_args(["https://a.test/", "--config", no_config_file])

    config = load_config(args, environ={})

    assert config == CrawlerConfig()
    assert config.max_url_length == 300
    assert config.delay == 0.1


def test_yaml_then_environment_then_arguments(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "workers: 3\n"
        "request_delay_ms: 250\n"
        "max_url_length: 100\n"
        "download: true\n"
        "exclude: /a,/b\n"
        "unknown_key: ignored\n"
    )
    args = parse_args(["https://a.test/", "--config", str(config_file), "-m", "50"])

    config = load_config(args, environ={"CRAWLER_WORKERS": "6", "LOG_LEVEL": "debug"})

    assert config.workers == 6
    assert config.request_delay_ms == 250
    assert config.max_url_length == 50
    assert config.download is True
    assert config.exclude == ("/a", "/b")
    assert config.log_level == "debug"


def test_command_line_flags(no_config_file):
    args = parse_args([
        "https://a.test/", "--config", no_config_file,
        "-d", "-c", "-e", "/x,,/y", "-t", "5", "-w", "2",
        "--export", "all.txt", "--export-internal", "in.txt", "--export-external", "out.txt",
    ])

    config = load_config(args, environ={})

    assert config.download and config.crawl_external
    assert config.exclude == ("/x", "/y")
    assert config.request_delay_ms == 5
    assert config.workers == 2
    assert (config.export_all, config.export_internal, config.export_external) == ("all.txt", "in.txt", "out.txt")


def test_invalid_worker_count(no_config_file):
    args = parse_args(["https://a.test/", "--config", no_config_file, "-w", "0"])
    with pytest.raises(ValueError):
        load_config(args, environ={})


REPORT = CrawlReport.from_urls("https://a.test/", [
    "https://b.test/", "https://a.test/x", "https://a.test/",
])


def test_report_is_printed_by_section():
    buffer = io.StringIO()
    app = CrawlerApp(CrawlerConfig(), "https://a.test/", console=Console(file=buffer, width=200))

    app.print_report(REPORT)

    assert buffer.getvalue().splitlines() == [
        "Internal urls:", "https://a.test/", "https://a.test/x",
        "External urls:", "https://b.test/",
    ]


async def test_exports(tmp_path):
    config = CrawlerConfig(
        export_all=str(tmp_path / "all.txt"),
        export_external=str(tmp_path / "external.txt"),
    )
    app = CrawlerApp(config, "https://a.test/", console=Console(file=io.StringIO()))

    await app.export(REPORT)

    assert (tmp_path / "all.txt").read_text() == "https://a.test/\nhttps://a.test/x\nhttps://b.test/\n"
    assert (tmp_path / "external.txt").read_text() == "https://b.test/\n"
    assert not (tmp_path / "internal.txt").exists()


def test_download_defaults_to_working_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    app = CrawlerApp(CrawlerConfig(download=True), "https://a.test/")

    assert str(app._storage().root) == str(tmp_path)
    assert CrawlerApp(CrawlerConfig(), "https://a.test/")._storage() is None


def test_invalid_seed_exits_non_zero(no_config_file, monkeypatch):
    monkeypatch.setattr(crawler_app, "setup_logging", lambda config: None)

    with pytest.raises(SystemExit) as exc:
        crawler_app.main(["not a url", "--config", no_config_file])

    assert exc.value.code == 1


def test_bad_environment_value_exits_non_zero(no_config_file, monkeypatch):
    monkeypatch.setenv("CRAWLER_WORKERS", "many")

    with pytest.raises(SystemExit) as exc:
        crawler_app.main(["https://a.test/", "--config", no_config_file])

    assert exc.value.code == 1
