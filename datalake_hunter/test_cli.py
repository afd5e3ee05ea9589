"""Tests for the datalake-hunter CLI commands."""
from __future__ import annotations

import csv

import pytest
from typer.testing import CliRunner

from datalake_hunter import cli
from datalake_hunter.bloom_filter import BloomFilter
from datalake_hunter.builder import build_from_corpus
from datalake_hunter.errors import TransportError
from datalake_hunter.store import save_filter


# =============================================================================
# Fixtures
# =============================================================================


class FakeClient:
    """Stands in for DatalakeClient with canned query hashes and known values."""

    def __init__(self, corpora, known, fail_confirm=False):
        self.corpora = corpora
        self.known = set(known)
        self.fail_confirm = fail_confirm
        self.confirmed = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def authenticate(self):
        return "tok"

    def fetch(self, query_hash):
        return list(self.corpora.get(query_hash, []))

    def confirm(self, values):
        if self.fail_confirm:
            raise TransportError(ConnectionError("connection reset"))
        self.confirmed.append(list(values))
        return {v: {"atom_value": v, "atom_type": "domain", "threat_found": True} for v in values if v in self.known}

    def close(self):
        self.closed = True


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def fake_client(monkeypatch):
    client = FakeClient(
        corpora={"qh-phishing": ["phish.example", "evil.example"], "qh-empty": []},
        known={"evil.example", "phish.example"},
    )
    monkeypatch.setattr(cli, "_client", lambda config: client)
    return client


@pytest.fixture
def input_file(tmp_path):
    path = tmp_path / "input.txt"
    path.write_text("evil.example\nclean.example\nphish.example\nevil.example\n", encoding="utf-8")
    return path


@pytest.fixture
def malware_bloom(tmp_path):
    path = tmp_path / "malware.bloom"
    save_filter(build_from_corpus(["evil.example", "bad.example"], 0.0001), path)
    return path


def read_csv(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


# =============================================================================
# create
# =============================================================================


def test_create_from_file(runner, tmp_path):
    corpus = tmp_path / "corpus.txt"
    corpus.write_text("a\nb\nc\n", encoding="utf-8")
    output = tmp_path / "out.bloom"

    result = runner.invoke(cli.app, ["create", "-f", str(corpus), "-o", str(output), "-r", "0.001"])

    assert result.exit_code == 0, result.output
    assert "Successfully created the bloom filter" in result.output
    assert "Values: 3" in result.output
    bloom = BloomFilter.from_bytes(output.read_bytes())
    assert bloom.error_rate == 0.001
    assert len(bloom) == 3
    assert all(v in bloom for v in "abc")


def test_create_from_queryhash(runner, tmp_path, fake_client):
    output = tmp_path / "phishing.bloom"
    result = runner.invoke(cli.app, ["create", "-q", "qh-phishing", "-o", str(output)])

    assert result.exit_code == 0, result.output
    assert "phish.example" in BloomFilter.from_bytes(output.read_bytes())
    assert fake_client.closed


@pytest.mark.parametrize("rate", ["0", "1", "1.5", "abc"])
def test_create_rejects_invalid_rate(runner, tmp_path, rate):
    corpus = tmp_path / "corpus.txt"
    corpus.write_text("a\n", encoding="utf-8")
    result = runner.invoke(cli.app, ["create", "-f", str(corpus), "-o", str(tmp_path / "x.bloom"), "-r", rate])
    assert result.exit_code != 0


def test_create_rejects_empty_corpus(runner, tmp_path):
    corpus = tmp_path / "empty.txt"
    corpus.write_text("\n\n", encoding="utf-8")
    result = runner.invoke(cli.app, ["create", "-f", str(corpus), "-o", str(tmp_path / "x.bloom")])

    assert result.exit_code == 1
    assert "empty corpus" in result.output


def test_create_requires_exactly_one_source(runner, tmp_path):
    result = runner.invoke(cli.app, ["create", "-o", str(tmp_path / "x.bloom")])
    assert result.exit_code == 1
    assert "exactly one of --file or --queryhash" in result.output


# =============================================================================
# check
# =============================================================================


def test_check_with_bloom_files(runner, tmp_path, input_file, malware_bloom):
    output = tmp_path / "matches.csv"
    result = runner.invoke(cli.app, ["check", "-i", str(input_file), "-o", str(output), "-b", str(malware_bloom)])

    assert result.exit_code == 0, result.output
    assert "malware: 2 matching values" in result.output
    assert read_csv(output) == [
        ["matching_value", "bloom_filter"],
        ["evil.example", "malware"],
        ["evil.example", "malware"],
    ]


def test_check_with_queryhash_and_lookup(runner, tmp_path, input_file, malware_bloom, fake_client):
    output = tmp_path / "matches.csv"
    lookup = tmp_path / "lookup.csv"
    save_dir = tmp_path / "saved"
    result = runner.invoke(
        cli.app,
        [
            "check",
            "-i", str(input_file),
            "-o", str(output),
            "-b", str(malware_bloom),
            "-q", "qh-phishing",
            "-l", str(lookup),
            "--save-dir", str(save_dir),
        ],
    )

    assert result.exit_code == 0, result.output
    # evil.example x2 in malware, evil.example x2 + phish.example in qh-phishing
    assert "5 matches out of 4 values" in result.output
    assert fake_client.confirmed == [["evil.example", "phish.example"]]
    assert "2 values confirmed by Datalake" in result.output
    assert "Warning: 5 bloom filter matches but 2 confirmed" in result.output
    assert [row[0] for row in read_csv(lookup)[1:]] == ["evil.example", "phish.example"]
    assert (save_dir / "qh-phishing.bloom").exists()


def test_check_empty_queryhash_aborts_without_partial(runner, tmp_path, input_file, fake_client):
    result = runner.invoke(cli.app, ["check", "-i", str(input_file), "-o", str(tmp_path / "m.csv"), "-q", "qh-empty"])
    assert result.exit_code == 1
    assert "qh-empty: cannot build a bloom filter from an empty corpus" in result.output


def test_check_partial_skips_bad_inputs(runner, tmp_path, input_file, malware_bloom, fake_client):
    broken = tmp_path / "broken.bloom"
    broken.write_bytes(b"garbage")
    output = tmp_path / "matches.csv"

    result = runner.invoke(
        cli.app,
        [
            "check",
            "-i", str(input_file),
            "-o", str(output),
            "-b", str(broken),
            "-b", str(malware_bloom),
            "-q", "qh-empty",
            "--partial",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Skipped query hash qh-empty" in result.output
    assert len(read_csv(output)) == 3


def test_check_broken_bloom_aborts(runner, tmp_path, input_file):
    broken = tmp_path / "broken.bloom"
    broken.write_bytes(b"garbage")
    result = runner.invoke(cli.app, ["check", "-i", str(input_file), "-o", str(tmp_path / "m.csv"), "-b", str(broken)])

    assert result.exit_code == 1
    assert "broken.bloom" in result.output


def test_check_lookup_failure_keeps_match_report(runner, tmp_path, input_file, malware_bloom, monkeypatch):
    client = FakeClient({}, set(), fail_confirm=True)
    monkeypatch.setattr(cli, "_client", lambda config: client)
    output = tmp_path / "matches.csv"

    result = runner.invoke(
        cli.app,
        ["check", "-i", str(input_file), "-o", str(output), "-b", str(malware_bloom), "-l", str(tmp_path / "l.csv")],
    )

    assert result.exit_code == 1
    assert "match report" in result.output
    assert len(read_csv(output)) == 3
    assert client.closed


def test_check_requires_a_filter_source(runner, tmp_path, input_file):
    result = runner.invoke(cli.app, ["check", "-i", str(input_file), "-o", str(tmp_path / "m.csv")])
    assert result.exit_code == 1


# =============================================================================
# lookup
# =============================================================================


def test_lookup_writes_records(runner, tmp_path, fake_client):
    source = tmp_path / "values.csv"
    source.write_text("evil.example,domain\nclean.example,domain\nevil.example,domain\n", encoding="utf-8")
    output = tmp_path / "records.csv"

    result = runner.invoke(cli.app, ["lookup", "-i", str(source), "-o", str(output)])

    assert result.exit_code == 0, result.output
    assert fake_client.confirmed == [["evil.example", "clean.example"]]
    assert "1 of 2 values found in Datalake" in result.output
    rows = read_csv(output)
    assert rows[0][0] == "atom_value"
    assert rows[1][:3] == ["evil.example", "domain", "True"]
