"""Common CLI options for the CLI."""

import typer

from wsops.core.settings import MAX_PARALLEL, MAX_USERS

CountOpt = typer.Option(
    None,
    "--count",
    "-c",
    help=f"Number of numbered users to target (1-{MAX_USERS})",
)

UsersOpt = typer.Option(
    None,
    "--users",
    "-u",
    help="Comma-separated list of usernames (e.g. user1,user2)",
)

UsersFileOpt = typer.Option(
    None,
    "--users-file",
    help="File with one username per line (# starts a comment)",
    dir_okay=False,
)

UseExistingOpt = typer.Option(
    False,
    "--use-existing",
    help="Target the users that already exist in the htpasswd store",
)

PasswordOpt = typer.Option(
    "workshop123",
    "--password",
    envvar="WSOPS_PASSWORD",
    help="Password for created identities",
    show_default=False,
)

UserPrefixOpt = typer.Option(
    None,
    "--prefix",
    help="Username prefix for numbered users (default: user)",
)

NamespaceSuffixOpt = typer.Option(
    None,
    "--namespace-suffix",
    help="Suffix of per-user namespaces (default: devspaces)",
)

DryRunOpt = typer.Option(
    False,
    "--dry-run",
    help="Show what would be done, but don't change anything",
)

ForceOpt = typer.Option(
    False,
    "--force",
    "-f",
    help="Skip the confirmation prompt",
)

IncrementalOpt = typer.Option(
    False,
    "--incremental",
    help="Leave users with an existing workspace untouched",
)

ParallelOpt = typer.Option(
    1,
    "--parallel",
    "-n",
    help=f"Number of users provisioned concurrently (1-{MAX_PARALLEL})",
)

GenerateUrlsOpt = typer.Option(
    False,
    "--generate-urls",
    help="Only print the access summary; don't provision anything",
)

NoWaitOpt = typer.Option(
    False,
    "--no-wait",
    help="Don't wait for new workspaces to start",
)
