"""Typer CLI for private static sites on S3 + CloudFront."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from private_site import netinfo
from private_site.config.loader import load_site_config
from private_site.config.models import AccessStrategy, SiteConfig
from private_site.errors import ConvergenceTimeout, ProvisioningError, StepFailed
from private_site.observability.logging import configure_logging
from private_site.observability.status import check_site_status
from private_site.provisioning.access import AccessController
from private_site.provisioning.certificate import CertificateIssuer
from private_site.provisioning.pipeline import RunResult
from private_site.provisioning.steps import SiteProvisioner, alias_run
from private_site.provisioning.teardown import SiteTeardown
from private_site.resources.aws.factory import AwsSiteApis
from private_site.resources.base import Status

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="private-site", help="Private static websites on S3 + CloudFront")

EXIT_FAILED = 1
EXIT_TIMEOUT = 2

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Site YAML")
BUCKET_OPTION = typer.Option(None, "--bucket", help="Origin bucket name")
DOMAIN_OPTION = typer.Option(None, "--domain", help="Site domain (alias + certificate)")
ZONE_OPTION = typer.Option(None, "--zone", help="Hosted zone domain")
REGION_OPTION = typer.Option(None, "--region", help="Bucket region")
STORAGE_PROFILE_OPTION = typer.Option(None, "--storage-profile", help="AWS profile for S3")
CDN_PROFILE_OPTION = typer.Option(None, "--cdn-profile", help="AWS profile for CloudFront/WAF")
DNS_PROFILE_OPTION = typer.Option(None, "--dns-profile", help="AWS profile for Route 53")
CERT_PROFILE_OPTION = typer.Option(None, "--cert-profile", help="AWS profile for ACM")
MAX_ATTEMPTS_OPTION = typer.Option(None, "--max-attempts", min=1, help="Polls per wait")
POLL_INTERVAL_OPTION = typer.Option(None, "--poll-interval", min=0, help="Seconds between polls")
LOG_LEVEL_OPTION = typer.Option(None, "--log-level", help="debug, info, warning or error")


def _polling(max_attempts: int | None, interval: float | None) -> dict[str, Any]:
    policy = {"max_attempts": max_attempts, "interval_seconds": interval}
    return {name: dict(policy) for name in ("distribution", "certificate", "firewall", "dns")}


def _overrides(
    *,
    bucket: str | None = None,
    domain: str | None = None,
    zone: str | None = None,
    region: str | None = None,
    storage_profile: str | None = None,
    cdn_profile: str | None = None,
    dns_profile: str | None = None,
    cert_profile: str | None = None,
    max_attempts: int | None = None,
    poll_interval: float | None = None,
    log_level: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    overrides: dict[str, Any] = {
        "identities": {
            "storage_identity": storage_profile,
            "cdn_identity": cdn_profile,
            "dns_identity": dns_profile,
            "cert_identity": cert_profile,
            "region": region,
        },
        "bucket": {"name": bucket},
        "distribution": {"alt_domain": domain},
        "polling": _polling(max_attempts, poll_interval),
        "logging": {"level": log_level},
    }
    if domain and zone:
        overrides["dns"] = {"domain": domain, "zone_domain": zone}
        overrides["certificate"] = {"domain": domain, "zone_domain": zone}
    for key, value in extra.items():
        section, _, name = key.partition("__")
        overrides.setdefault(section, {})[name] = value
    return overrides


def _load(config_path: str | None, overrides: dict[str, Any]) -> SiteConfig:
    if config_path is not None and not Path(config_path).exists():
        console.print(f"[red]Config file not found: {config_path}[/red]")
        raise typer.Exit(EXIT_FAILED)
    try:
        return load_site_config(config_path, overrides)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Config error:[/red] {escape(str(exc))}")
        raise typer.Exit(EXIT_FAILED) from exc


@contextmanager
def _session(config: SiteConfig) -> Iterator[None]:
    """Run log for the command, plus exit codes for provisioning failures."""
    run_log = configure_logging(config.logging)
    if run_log is not None:
        logger.info("run_log.opened", path=str(run_log.path))
    try:
        yield
    except StepFailed as exc:
        console.print(f"[red]Step failed:[/red] {exc.step}")
        console.print(f"  resource: {exc.kind or '-'} {exc.key or '-'}")
        console.print(f"  cause:    {escape(str(exc.cause))}")
        if exc.completed:
            console.print(f"  completed steps: {', '.join(exc.completed)}")
        if exc.timed_out:
            console.print(
                f"[yellow]Timed out (last status: {exc.last_status}); "
                "the change may still complete, check it manually[/yellow]"
            )
            raise typer.Exit(EXIT_TIMEOUT) from exc
        raise typer.Exit(EXIT_FAILED) from exc
    except ConvergenceTimeout as exc:
        console.print(f"[yellow]Timed out:[/yellow] {escape(str(exc))}")
        raise typer.Exit(EXIT_TIMEOUT) from exc
    except (ProvisioningError, ValueError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(EXIT_FAILED) from exc
    finally:
        if run_log is not None:
            run_log.close()


def _print_outputs(title: str, result: RunResult) -> None:
    table = Table(title=title)
    table.add_column("Output", style="cyan")
    table.add_column("Value")
    for name, value in result.outputs.items():
        if name == "access_plan":
            continue
        table.add_row(name, "" if value is None else str(value))
    console.print(table)


@app.command()
def validate(
    config_path: str | None = CONFIG_OPTION,
    bucket: str | None = BUCKET_OPTION,
    domain: str | None = DOMAIN_OPTION,
    zone: str | None = ZONE_OPTION,
    region: str | None = REGION_OPTION,
) -> None:
    """Load a site configuration and print it fully resolved."""
    config = _load(
        config_path, _overrides(bucket=bucket, domain=domain, zone=zone, region=region)
    )
    console.print(f"[green]Valid[/green]: bucket={config.bucket.name}")
    console.print_json(config.model_dump_json())


@app.command()
def provision(
    config_path: str | None = CONFIG_OPTION,
    bucket: str | None = BUCKET_OPTION,
    domain: str | None = DOMAIN_OPTION,
    zone: str | None = ZONE_OPTION,
    region: str | None = REGION_OPTION,
    storage_profile: str | None = STORAGE_PROFILE_OPTION,
    cdn_profile: str | None = CDN_PROFILE_OPTION,
    dns_profile: str | None = DNS_PROFILE_OPTION,
    cert_profile: str | None = CERT_PROFILE_OPTION,
    certificate_arn: str | None = typer.Option(
        None, "--certificate-arn", help="Existing ACM certificate to serve"
    ),
    strategy: AccessStrategy | None = typer.Option(
        None, "--strategy", help="Access restriction mechanism"
    ),
    allow: list[str] = typer.Option([], "--allow", help="Allowed CIDR (repeatable)"),
    my_ip: bool = typer.Option(False, "--my-ip", help="Also allow this machine's public IP"),
    min_ttl: int | None = typer.Option(None, "--min-ttl"),
    default_ttl: int | None = typer.Option(None, "--default-ttl"),
    max_ttl: int | None = typer.Option(None, "--max-ttl"),
    max_attempts: int | None = MAX_ATTEMPTS_OPTION,
    poll_interval: float | None = POLL_INTERVAL_OPTION,
    no_wait: bool = typer.Option(
        False, "--no-wait", help="Do not wait for the distribution to deploy"
    ),
    log_level: str | None = LOG_LEVEL_OPTION,
) -> None:
    """Provision (or converge) the whole site."""
    config = _load(
        config_path,
        _overrides(
            bucket=bucket,
            domain=domain,
            zone=zone,
            region=region,
            storage_profile=storage_profile,
            cdn_profile=cdn_profile,
            dns_profile=dns_profile,
            cert_profile=cert_profile,
            max_attempts=max_attempts,
            poll_interval=poll_interval,
            log_level=log_level,
            distribution__certificate_arn=certificate_arn,
            distribution__min_ttl=min_ttl,
            distribution__default_ttl=default_ttl,
            distribution__max_ttl=max_ttl,
            access__strategy=strategy.value if strategy else None,
            access__allowed_cidrs=list(allow),
        ),
    )
    if no_wait:
        config = config.model_copy(update={"wait_for_deployment": False})
    with _session(config):
        extra = [netinfo.public_ip()] if my_ip else []
        result = SiteProvisioner(config, AwsSiteApis(config), extra_cidrs=extra).run()
        _print_outputs(f"Provisioned {config.bucket.name}", result)


@app.command()
def teardown(
    config_path: str | None = CONFIG_OPTION,
    bucket: str | None = BUCKET_OPTION,
    domain: str | None = DOMAIN_OPTION,
    zone: str | None = ZONE_OPTION,
    storage_profile: str | None = STORAGE_PROFILE_OPTION,
    cdn_profile: str | None = CDN_PROFILE_OPTION,
    dns_profile: str | None = DNS_PROFILE_OPTION,
    distribution_id: str | None = typer.Option(
        None, "--distribution-id", help="Distribution to delete (default: by bucket origin)"
    ),
    tag: str | None = typer.Option(
        None, "--tag", help="Find the distribution by its Name tag instead"
    ),
    delete_bucket: bool = typer.Option(
        False, "--delete-bucket", help="Also delete the bucket (must be empty)"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    max_attempts: int | None = MAX_ATTEMPTS_OPTION,
    poll_interval: float | None = POLL_INTERVAL_OPTION,
    log_level: str | None = LOG_LEVEL_OPTION,
) -> None:
    """Disable and delete the distribution, the alias and optionally the bucket."""
    config = _load(
        config_path,
        _overrides(
            bucket=bucket,
            domain=domain,
            zone=zone,
            storage_profile=storage_profile,
            cdn_profile=cdn_profile,
            dns_profile=dns_profile,
            max_attempts=max_attempts,
            poll_interval=poll_interval,
            log_level=log_level,
        ),
    )
    if not yes:
        confirm = typer.confirm(f"Tear down the site served from '{config.bucket.name}'?")
        if not confirm:
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)
    with _session(config):
        result = SiteTeardown(
            config,
            AwsSiteApis(config),
            delete_bucket=delete_bucket,
            distribution_id=distribution_id,
            name_tag=tag,
        ).run()
        _print_outputs(f"Tore down {config.bucket.name}", result)


@app.command()
def alias(
    config_path: str | None = CONFIG_OPTION,
    bucket: str | None = BUCKET_OPTION,
    domain: str | None = DOMAIN_OPTION,
    zone: str | None = ZONE_OPTION,
    dns_profile: str | None = DNS_PROFILE_OPTION,
    cdn_profile: str | None = CDN_PROFILE_OPTION,
    distribution_id: str | None = typer.Option(
        None, "--distribution-id", help="Distribution to point at"
    ),
    tag: str | None = typer.Option(
        None, "--tag", help="Find the distribution by its Name tag instead"
    ),
    private_zone: bool | None = typer.Option(
        None, "--private-zone/--public-zone", help="Which zone to use when both exist"
    ),
    max_attempts: int | None = MAX_ATTEMPTS_OPTION,
    poll_interval: float | None = POLL_INTERVAL_OPTION,
    log_level: str | None = LOG_LEVEL_OPTION,
) -> None:
    """Create or update the Route 53 alias record for the site domain."""
    config = _load(
        config_path,
        _overrides(
            bucket=bucket,
            domain=domain,
            zone=zone,
            dns_profile=dns_profile,
            cdn_profile=cdn_profile,
            max_attempts=max_attempts,
            poll_interval=poll_interval,
            log_level=log_level,
            dns__private_zone=private_zone,
        ),
    )
    with _session(config):
        run = alias_run(
            config, AwsSiteApis(config), distribution_id=distribution_id, name_tag=tag
        )
        _print_outputs("Alias record", run.execute())


@app.command()
def certificate(
    config_path: str | None = CONFIG_OPTION,
    domain: str | None = DOMAIN_OPTION,
    zone: str | None = ZONE_OPTION,
    bucket: str | None = BUCKET_OPTION,
    cert_profile: str | None = CERT_PROFILE_OPTION,
    dns_profile: str | None = DNS_PROFILE_OPTION,
    max_attempts: int | None = MAX_ATTEMPTS_OPTION,
    poll_interval: float | None = POLL_INTERVAL_OPTION,
    log_level: str | None = LOG_LEVEL_OPTION,
) -> None:
    """Request an ACM certificate and validate it through DNS."""
    config = _load(
        config_path,
        _overrides(
            domain=domain,
            zone=zone,
            bucket=bucket,
            cert_profile=cert_profile,
            dns_profile=dns_profile,
            max_attempts=max_attempts,
            poll_interval=poll_interval,
            log_level=log_level,
        ),
    )
    with _session(config):
        result = CertificateIssuer(config, AwsSiteApis(config)).run()
        _print_outputs("Certificate", result)


def _access_command(
    command: str,
    config: SiteConfig,
    cidrs: list[str],
    vpcs: list[str],
    *,
    detect: bool,
    dry_run: bool,
) -> None:
    with _session(config):
        cidrs = list(cidrs)
        vpcs = list(vpcs)
        if detect:
            cidrs.append(netinfo.public_ip())
            if config.access.strategy == AccessStrategy.BUCKET_POLICY:
                vpc = netinfo.instance_vpc_id()
                if vpc:
                    vpcs.append(vpc)
        controller = AccessController(config, AwsSiteApis(config))
        operation = controller.unlock if command == "unlock" else controller.lock
        plan = operation(cidrs, vpcs, dry_run=dry_run)
        if dry_run:
            console.print("[yellow]Dry run, nothing applied[/yellow]")
            console.print_json(json.dumps(plan.describe()))
        else:
            console.print(f"[green]{command.capitalize()}ed[/green] {config.bucket.name}")
            console.print(f"  networks: {', '.join(plan.cidrs) or '(none)'}")
            if plan.vpc_ids:
                console.print(f"  vpcs:     {', '.join(plan.vpc_ids)}")


@app.command()
def unlock(
    config_path: str | None = CONFIG_OPTION,
    bucket: str | None = BUCKET_OPTION,
    storage_profile: str | None = STORAGE_PROFILE_OPTION,
    cdn_profile: str | None = CDN_PROFILE_OPTION,
    cidr: list[str] = typer.Option([], "--cidr", help="Network to allow (repeatable)"),
    vpc: list[str] = typer.Option([], "--vpc", help="VPC id to allow (repeatable)"),
    detect: bool = typer.Option(
        True, "--detect/--no-detect", help="Add this machine's public IP (and VPC on EC2)"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the restriction only"),
    log_level: str | None = LOG_LEVEL_OPTION,
) -> None:
    """Widen the access restriction with more networks."""
    config = _load(
        config_path,
        _overrides(
            bucket=bucket,
            storage_profile=storage_profile,
            cdn_profile=cdn_profile,
            log_level=log_level,
        ),
    )
    _access_command("unlock", config, cidr, vpc, detect=detect, dry_run=dry_run)


@app.command()
def lock(
    config_path: str | None = CONFIG_OPTION,
    bucket: str | None = BUCKET_OPTION,
    storage_profile: str | None = STORAGE_PROFILE_OPTION,
    cdn_profile: str | None = CDN_PROFILE_OPTION,
    cidr: list[str] = typer.Option([], "--cidr", help="Network to allow (repeatable)"),
    vpc: list[str] = typer.Option([], "--vpc", help="VPC id to allow (repeatable)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the restriction only"),
    log_level: str | None = LOG_LEVEL_OPTION,
) -> None:
    """Replace the access restriction with exactly the given networks."""
    config = _load(
        config_path,
        _overrides(
            bucket=bucket,
            storage_profile=storage_profile,
            cdn_profile=cdn_profile,
            log_level=log_level,
        ),
    )
    _access_command("lock", config, cidr, vpc, detect=False, dry_run=dry_run)


@app.command()
def status(
    config_path: str | None = CONFIG_OPTION,
    bucket: str | None = BUCKET_OPTION,
    domain: str | None = DOMAIN_OPTION,
    zone: str | None = ZONE_OPTION,
    storage_profile: str | None = STORAGE_PROFILE_OPTION,
    cdn_profile: str | None = CDN_PROFILE_OPTION,
    dns_profile: str | None = DNS_PROFILE_OPTION,
) -> None:
    """Show the observed state of every site resource."""
    config = _load(
        config_path,
        _overrides(
            bucket=bucket,
            domain=domain,
            zone=zone,
            storage_profile=storage_profile,
            cdn_profile=cdn_profile,
            dns_profile=dns_profile,
        ),
    )
    result = check_site_status(config, AwsSiteApis(config))

    table = Table(title=f"Site {config.bucket.name}")
    table.add_column("Resource", style="cyan")
    table.add_column("Key")
    table.add_column("Status")
    table.add_column("Detail")

    for r in result.resources:
        style = "green" if r.present else ("yellow" if r.status == Status.ABSENT else "red")
        table.add_row(r.kind, r.key, f"[{style}]{r.status}[/{style}]", r.detail)

    console.print(table)
    if not result.complete:
        raise typer.Exit(EXIT_FAILED)
