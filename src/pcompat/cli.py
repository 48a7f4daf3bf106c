"""CLI commands for surveying release channels and testing patch compatibility."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer

from .config import DEFAULT_CONFIG_NAME, ConfigError, HarnessConfig, dump_default_config, load_config
from .patches import PatchSet
from .report import format_compatibility_report, format_versions_report, recommend
from .runner import CompatibilityReport, check_compatibility
from .sandbox import SandboxError, SandboxInterrupted, SandboxSession
from .tools.vcs import GitError, GitRepository
from .versions import (
    Channel,
    ShapeHeuristicPolicy,
    classify_tags,
    highest_major,
    latest_per_channel,
    latest_per_major,
    latest_per_major_overview,
    major_of,
    parse_tags,
)

APP_HELP = "Release channel survey and patch compatibility harness."

EXIT_OK = 0
EXIT_PATCH_FAILURES = 1
EXIT_USAGE = 2
EXIT_SANDBOX_BEGIN = 3
EXIT_SANDBOX_END = 4
EXIT_INTERRUPTED = 130

app = typer.Typer(help=APP_HELP)


def _configure_logging(config: HarnessConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.logging.level)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _load(config: str, verbose: bool) -> HarnessConfig:
    try:
        config_data = load_config(Path(config))
    except ConfigError as error:
        typer.echo(str(error), err=True)
        raise typer.Exit(code=EXIT_USAGE) from error
    _configure_logging(config_data, verbose)
    return config_data


def _open_repository(config_data: HarnessConfig, repo: Optional[str]) -> GitRepository:
    root = Path(repo).expanduser() if repo else config_data.repository_root()
    try:
        return GitRepository(root)
    except GitError as error:
        typer.echo(f"Failed to open repository at {root}: {error}", err=True)
        raise typer.Exit(code=EXIT_USAGE) from error


def _patch_set(config_data: HarnessConfig, patches_dir: Optional[str]) -> PatchSet:
    directory = Path(patches_dir).expanduser().resolve() if patches_dir else config_data.patches_directory()
    if not directory.is_dir():
        typer.secho(f"Patches directory not found at: {directory}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=EXIT_USAGE)
    names = config_data.patches.names
    if names is None:
        return PatchSet.discover(directory)
    return PatchSet(directory, names)


def _policy(config_data: HarnessConfig) -> ShapeHeuristicPolicy:
    return ShapeHeuristicPolicy(
        stable_patch_threshold=config_data.classifier.stable_patch_threshold,
        newest_major_canary=config_data.classifier.newest_major_canary,
    )


def _resolve_target(
    repository: GitRepository,
    config_data: HarnessConfig,
    *,
    target: Optional[str],
    major: Optional[int],
) -> str:
    if target:
        return target
    try:
        tags = repository.list_tags()
    except GitError as error:
        typer.echo(f"Unable to list tags: {error}", err=True)
        raise typer.Exit(code=EXIT_USAGE) from error

    if major is not None:
        latest = latest_per_major(tags, major)
        if latest is None:
            typer.echo(f"No tags found for major version {major}.", err=True)
            raise typer.Exit(code=EXIT_USAGE)
        return str(latest)

    classified = classify_tags(
        tags,
        _policy(config_data),
        highest_major_seen=config_data.classifier.canary_major,
    )
    stable = latest_per_channel(classified).get(Channel.STABLE)
    if stable is None:
        typer.echo("No stable tag found; pass --target or --major.", err=True)
        raise typer.Exit(code=EXIT_USAGE)
    return str(stable)


def _exit_status(report: CompatibilityReport, allow_failures: bool) -> int:
    if report.has_failures and not allow_failures:
        return EXIT_PATCH_FAILURES
    return EXIT_OK


@app.command()
def init(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Where to write the configuration file.",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write a configuration file populated with the defaults."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Config file already exists: {config_path} (use --force to overwrite)", err=True)
        raise typer.Exit(code=EXIT_USAGE)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(dump_default_config(), encoding="utf-8")
    typer.echo(f"Wrote default configuration to {config_path}")


@app.command()
def versions(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the harness configuration file.",
    ),
    repo: Optional[str] = typer.Option(None, "--repo", help="Repository root (overrides the config)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Report the latest tag per major version and per release channel."""
    config_data = _load(config, verbose)
    repository = _open_repository(config_data, repo)

    try:
        tags = repository.list_tags()
    except GitError as error:
        typer.echo(f"Unable to list tags: {error}", err=True)
        raise typer.Exit(code=EXIT_USAGE) from error

    policy = _policy(config_data)
    parsed = parse_tags(tags)
    highest = config_data.classifier.canary_major
    if highest is None:
        highest = highest_major(parsed)
    classified = classify_tags(parsed, policy, highest_major_seen=highest)
    latest = latest_per_channel(classified)
    overview = latest_per_major_overview(
        parsed,
        policy,
        limit=config_data.classifier.overview_limit,
        highest_major_seen=highest,
    )

    current_version = repository.describe()
    recommendation = recommend(major_of(current_version), latest.get(Channel.STABLE))
    typer.echo(
        format_versions_report(
            current_branch=repository.current_branch(),
            current_version=current_version,
            overview=overview,
            latest=latest,
            recommendation=recommendation,
        )
    )


@app.command()
def patches(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the harness configuration file.",
    ),
    patches_dir: Optional[str] = typer.Option(
        None, "--patches-dir", help="Patch directory (overrides the config)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """List configured patches in application order and whether each file exists."""
    config_data = _load(config, verbose)
    patch_set = _patch_set(config_data, patches_dir)
    typer.echo(f"Patches in {patch_set.directory}:")
    missing = 0
    for name, present in patch_set.inventory():
        if present:
            typer.echo(f"   {name}: present")
        else:
            missing += 1
            typer.secho(f"   {name}: NOT FOUND", fg=typer.colors.YELLOW)
    if missing:
        raise typer.Exit(code=EXIT_PATCH_FAILURES)


@app.command("test-patches")
def test_patches(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the harness configuration file.",
    ),
    repo: Optional[str] = typer.Option(None, "--repo", help="Repository root (overrides the config)."),
    patches_dir: Optional[str] = typer.Option(
        None, "--patches-dir", help="Patch directory (overrides the config)."
    ),
    target: Optional[str] = typer.Option(None, "--target", "-t", help="Tag or revision to test against."),
    major: Optional[int] = typer.Option(
        None, "--major", "-m", help="Test against the latest tag of this major version."
    ),
    patch: List[str] = typer.Option(
        None,
        "--patch",
        "-p",
        help="Patch name to test (repeatable; defaults to the configured list).",
    ),
    allow_failures: bool = typer.Option(
        False,
        "--allow-failures",
        help="Exit with status 0 even when patches conflict or are missing.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Check that the patch stack still applies to an upstream revision."""
    config_data = _load(config, verbose)
    patch_set = _patch_set(config_data, patches_dir)
    repository = _open_repository(config_data, repo)
    revision = _resolve_target(repository, config_data, target=target, major=major)
    current_version = repository.describe()

    typer.echo("Version information:")
    typer.echo(f"   Current version: {current_version or 'unknown'}")
    typer.echo(f"   Target:          {revision}")
    typer.echo(f"   Using patches from: {patch_set.directory}")
    typer.echo("")

    sandbox_settings = config_data.sandbox

    def _session(repository: GitRepository) -> SandboxSession:
        return SandboxSession(
            repository,
            branch_prefix=sandbox_settings.branch_prefix,
            include_untracked=sandbox_settings.include_untracked,
        )

    try:
        report = check_compatibility(
            repository,
            patch_set,
            revision,
            names=patch or None,
            session_factory=_session,
            commit_applied=sandbox_settings.commit_applied,
            diagnostic_lines=config_data.report.diagnostic_lines,
            diagnostic_chars=config_data.report.diagnostic_chars,
        )
    except SandboxError as error:
        if error.phase == "end":
            typer.secho("!" * 56, fg=typer.colors.RED, bold=True, err=True)
            typer.secho(f"SANDBOX CLEANUP FAILED: {error}", fg=typer.colors.RED, bold=True, err=True)
            if error.stash_token:
                typer.secho(
                    f"Your uncommitted changes are preserved in stash {error.stash_token}. "
                    f"Recover them with: git stash apply {error.stash_token}",
                    fg=typer.colors.RED,
                    bold=True,
                    err=True,
                )
            typer.secho("!" * 56, fg=typer.colors.RED, bold=True, err=True)
            raise typer.Exit(code=EXIT_SANDBOX_END) from error
        typer.secho(f"Unable to set up the sandbox: {error}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=EXIT_SANDBOX_BEGIN) from error
    except SandboxInterrupted as interrupt:
        if interrupt.restored:
            typer.echo(f"Interrupted ({interrupt}); original checkout restored.", err=True)
        else:
            typer.secho(
                f"Interrupted ({interrupt}) before the original checkout could be restored; "
                "inspect `git status` and `git stash list`.",
                fg=typer.colors.RED,
                bold=True,
                err=True,
            )
        raise typer.Exit(code=EXIT_INTERRUPTED) from None
    except GitError as error:
        typer.echo(f"Patch run aborted: {error}; original checkout restored.", err=True)
        raise typer.Exit(code=EXIT_USAGE) from error

    typer.echo(format_compatibility_report(report, current_version=current_version))
    status = _exit_status(report, allow_failures)
    if status:
        raise typer.Exit(code=status)


@app.callback(invoke_without_command=True)
def _default(ctx: typer.Context) -> None:
    """Run the release channel survey when no command is given."""
    if ctx.invoked_subcommand is None:
        versions(config=DEFAULT_CONFIG_NAME, repo=None, verbose=False)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
