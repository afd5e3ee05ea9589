"""Command-line interface for Datalake Hunter."""

import logging
from pathlib import Path
from typing import Annotated, List, Optional

import typer

from . import files
from .builder import build_from_corpus
from .config import ENVIRONMENTS, HunterConfig, validate_rate
from .errors import ConfigError, HunterError, MissingInputError, RemoteError
from .matcher import match
from .reconcile import reconcile
from .remote import DatalakeClient, EnvCredentialProvider, USERNAME_VAR
from .store import (
    build_from_tokens,
    load_from_blobs,
    merge_filters,
    save_filter,
    save_filters,
)

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="datalake-hunter",
    help="Allow to mass check data from Datalake using bloom filters.",
    add_completion=False,
)


def _rate_callback(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    try:
        return validate_rate(value)
    except ConfigError as e:
        raise typer.BadParameter(e.message)


def _prompt_credentials():
    username = typer.prompt(f"Datalake username ({USERNAME_VAR} is not set)")
    password = typer.prompt("Datalake password", hide_input=True)
    return username, password


def _fail(message: str) -> None:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,
    environment: Annotated[
        Optional[str],
        typer.Option("--environment", "-e", help=f"Datalake API environment ({', '.join(ENVIRONMENTS)})."),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
) -> None:
    """Check indicators against bloom filters built from Datalake."""
    try:
        config = HunterConfig.from_env(environment=environment)
    except HunterError as e:
        _fail(e.message)
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.log_level,
        format=config.log_format,
        datefmt="%H:%M:%S",
    )
    ctx.obj = config


def _client(config: HunterConfig) -> DatalakeClient:
    env_credentials = EnvCredentialProvider()
    provider = env_credentials if env_credentials.available() else _prompt_credentials
    return DatalakeClient(config.remote, provider)


def _progress(token: str, status: str) -> None:
    if status == "started":
        typer.echo(f"Fetching values for query hash {token}...")
    elif status == "done":
        typer.echo(f"  Built bloom filter for {token}")


@app.command(name="create")
def create_cmd(
    ctx: typer.Context,
    output: Annotated[Path, typer.Option("--output", "-o", help="Path to the file to output the created bloom filter.")],
    file: Annotated[
        Optional[Path],
        typer.Option("--file", "-f", help="Path to the file to use to create a bloom filter. One value per line."),
    ] = None,
    queryhash: Annotated[
        Optional[str],
        typer.Option("--queryhash", "-q", help="Query hash from which to build a bloom filter."),
    ] = None,
    rate: Annotated[
        Optional[float],
        typer.Option(
            "--rate",
            "-r",
            callback=_rate_callback,
            help="Rate of false positive, between 0.0 and 1.0. The lower the rate the bigger the bloom filter.",
        ),
    ] = None,
) -> None:
    """Creates a bloom filter from a provided query hash or file."""
    config: HunterConfig = ctx.obj
    rate = rate or config.false_positive_rate
    if (file is None) == (queryhash is None):
        _fail("provide exactly one of --file or --queryhash")

    try:
        if file is not None:
            bloom = build_from_corpus(files.read_input(file), rate, source=str(file))
        else:
            with _client(config) as client:
                bloom = build_from_corpus(client.fetch(queryhash), rate, source=queryhash)
        save_filter(bloom, output)
    except HunterError as e:
        _fail(e.message)

    typer.secho(f"Successfully created the bloom filter at path: {output}", fg=typer.colors.GREEN, bold=True)
    typer.echo(f"  Values: {len(bloom):,}")
    typer.echo(f"  Size: {bloom.size:,} bits, {bloom.num_hashes} hashes")


def _skip_blob(path: Path, error: HunterError) -> None:
    logger.error("Skipping bloom filter: %s", error.message)


@app.command(name="check")
def check_cmd(
    ctx: typer.Context,
    input: Annotated[Path, typer.Option("--input", "-i", help="Path to file containing the values to check, one per line.")],
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Path to the CSV file receiving the matching inputs."),
    ],
    bloom: Annotated[
        Optional[List[Path]],
        typer.Option("--bloom", "-b", help="Bloom filter to check against. Repeatable."),
    ] = None,
    queryhash: Annotated[
        Optional[List[str]],
        typer.Option("--queryhash", "-q", help="Query hash from which to build a bloom filter. Repeatable."),
    ] = None,
    lookup: Annotated[
        Optional[Path],
        typer.Option("--lookup", "-l", help="Confirm matches in Datalake and write the records to this CSV file."),
    ] = None,
    rate: Annotated[
        Optional[float],
        typer.Option("--rate", "-r", callback=_rate_callback, help="Rate of false positive for query hash filters."),
    ] = None,
    save_dir: Annotated[
        Optional[Path],
        typer.Option("--save-dir", help="Directory in which to save the bloom filters built from query hashes."),
    ] = None,
    partial: Annotated[
        bool,
        typer.Option("--partial", help="Skip unusable bloom filters or query hashes instead of aborting."),
    ] = False,
    workers: Annotated[
        Optional[int],
        typer.Option("--workers", "-w", min=1, help="Maximum concurrent Datalake requests."),
    ] = None,
) -> None:
    """Checks if values in the input file are found in bloom filters or query hash results."""
    config: HunterConfig = ctx.obj
    rate = rate or config.false_positive_rate
    workers = workers or config.max_workers
    if not bloom and not queryhash:
        _fail("provide at least one --bloom or --queryhash")

    client: Optional[DatalakeClient] = None
    try:
        batch = files.read_input(input)
        filters = load_from_blobs(bloom or [], on_error=_skip_blob if partial else None)

        if queryhash or lookup:
            client = _client(config)
            client.authenticate()
        if queryhash:
            built = build_from_tokens(queryhash, rate, client.fetch, max_workers=workers, on_progress=_progress)
            if not built.ok and not partial:
                raise next(iter(built.errors.values()))
            for token, error in built.errors.items():
                typer.secho(f"Skipped query hash {token}: {error.message}", fg=typer.colors.YELLOW, err=True)
            if save_dir is not None:
                save_filters(built.filters, save_dir, config.filter_suffix)
            filters = merge_filters(filters, built.filters)

        if not filters:
            raise MissingInputError("no usable bloom filter to check against")

        report = match(batch, filters)
        files.write_matches(output, report.rows())
        for label in filters:
            typer.echo(f"{label}: {report.count(label):,} matching values")
        typer.secho(
            f"{report.aggregate_count:,} matches out of {len(batch):,} values written to {output}",
            fg=typer.colors.GREEN,
            bold=True,
        )

        if lookup is not None:
            try:
                result = reconcile(report.matched_values(), client.confirm, report.aggregate_count)
            except RemoteError as e:
                _fail(f"lookup failed, match report at {output} is unaffected: {e.message}")
            files.write_records(lookup, result.records.values())
            typer.echo(f"{result.authoritative_count:,} values confirmed by Datalake, written to {lookup}")
            if result.has_discrepancy:
                typer.secho(
                    f"Warning: {report.aggregate_count:,} bloom filter matches but "
                    f"{result.authoritative_count:,} confirmed by Datalake",
                    fg=typer.colors.YELLOW,
                )
    except HunterError as e:
        _fail(e.message)
    finally:
        if client is not None:
            client.close()


@app.command(name="lookup")
def lookup_cmd(
    ctx: typer.Context,
    input: Annotated[Path, typer.Option("--input", "-i", help="Path to a CSV file containing the values to look up.")],
    output: Annotated[Path, typer.Option("--output", "-o", help="Path to a CSV file in which to output the result.")],
) -> None:
    """Makes a lookup in Datalake on provided values."""
    config: HunterConfig = ctx.obj
    try:
        values = list(dict.fromkeys(files.read_input(input)))
        with _client(config) as client:
            records = client.confirm(values)
        files.write_records(output, records.values())
    except HunterError as e:
        _fail(e.message)

    typer.secho(
        f"{len(records):,} of {len(values):,} values found in Datalake, written to {output}",
        fg=typer.colors.GREEN,
        bold=True,
    )


if __name__ == "__main__":
    app()
