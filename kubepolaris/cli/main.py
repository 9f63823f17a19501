"""KubePolaris command-line interface.

Commands:
    kubepolaris status <cluster>                         Cache status per kind.
    kubepolaris overview <cluster>                       Node, pod and workload counts.
    kubepolaris resources <cluster> <kind> [-n NS]       List cached objects.
    kubepolaris evict <cluster>                          Stop and drop a cluster cache.
    kubepolaris serve                                    Run the API server.
    kubepolaris version                                  Print version and exit.

All commands except ``serve`` and ``version`` call the REST API at
http://localhost:8080 (configurable via ``--api-url``).
"""

from __future__ import annotations

import asyncio
import json

import click
import httpx

from kubepolaris import __version__

_DEFAULT_API_URL = "http://localhost:8080"

# ---------------------------------------------------------------------------
# Colour helpers
# ---------------------------------------------------------------------------

_STATUS_COLORS: dict[str, str] = {
    "ready": "green",
    "synced": "green",
    "healthy": "green",
    "pending": "yellow",
    "syncing": "yellow",
    "degraded": "yellow",
    "unavailable": "bright_black",
    "stopped": "bright_black",
    "unknown": "bright_black",
    "failed": "red",
    "critical": "red",
}


def _styled(state: str) -> str:
    return click.style(state, fg=_STATUS_COLORS.get(state.lower(), "white"))


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _request(api_url: str, method: str, path: str, params: dict[str, str] | None = None) -> httpx.Response:
    """Send a request and return the response; raises click.ClickException on failure."""
    url = api_url.rstrip("/") + path
    try:
        with httpx.Client(timeout=30.0) as client:
            response = client.request(method, url, params=params or None)
        response.raise_for_status()
        return response
    except httpx.ConnectError as err:
        raise click.ClickException(f"Cannot connect to KubePolaris API at {api_url}. Is the server running?") from err
    except httpx.HTTPStatusError as exc:
        _handle_error_response(exc.response)
        raise


def _get(api_url: str, path: str, params: dict[str, str] | None = None) -> dict[str, object]:
    return _request(api_url, "GET", path, params).json()  # type: ignore[no-any-return]


def _delete(api_url: str, path: str) -> None:
    _request(api_url, "DELETE", path)


def _handle_error_response(response: httpx.Response) -> None:
    """Parse an error response body and raise a friendly ClickException."""
    try:
        data: dict[str, object] = response.json()
        msg = f"{data.get('error', 'ERROR')}: {data.get('detail', 'Unknown error')}"
    except ValueError:
        msg = f"HTTP {response.status_code}: {response.text[:200]}"
    raise click.ClickException(msg)


_json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    default=False,
    help="Print raw JSON response.",
)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--api-url",
    default=_DEFAULT_API_URL,
    envvar="KUBEPOLARIS_API_URL",
    show_default=True,
    help="KubePolaris REST API base URL.",
)
@click.pass_context
def cli(ctx: click.Context, api_url: str) -> None:
    """KubePolaris: multi-cluster Kubernetes informer cache."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url


@cli.command("version")
def cmd_version() -> None:
    """Print the KubePolaris version and exit."""
    click.echo(f"kubepolaris {__version__}")


# ---------------------------------------------------------------------------
# kubepolaris status
# ---------------------------------------------------------------------------


@cli.command("status")
@click.argument("cluster_id")
@_json_option
@click.pass_context
def cmd_status(ctx: click.Context, cluster_id: str, output_json: bool) -> None:
    """Show the cache status of CLUSTER_ID and the sync state of every kind."""
    data = _get(ctx.obj["api_url"], f"/api/v1/clusters/{cluster_id}/status")
    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    status = str(data.get("status", "unknown"))
    click.echo(click.style(f"Cluster {cluster_id}", bold=True) + "  cache: " + _styled(status))
    kinds: dict[str, str] = data.get("kinds", {})  # type: ignore[assignment]
    for kind, state in sorted(kinds.items()):
        padding = max(0, 14 - len(kind)) * " "
        click.echo(f"  {kind}{padding} {_styled(state)}")


# ---------------------------------------------------------------------------
# kubepolaris overview
# ---------------------------------------------------------------------------


@cli.command("overview")
@click.argument("cluster_id")
@_json_option
@click.pass_context
def cmd_overview(ctx: click.Context, cluster_id: str, output_json: bool) -> None:
    """Show node, pod and workload counts for CLUSTER_ID."""
    data = _get(ctx.obj["api_url"], f"/api/v1/clusters/{cluster_id}/overview")
    if output_json:
        click.echo(json.dumps(data, indent=2))
        return
    _print_overview(data)


def _ratio(ready: object, total: object) -> str:
    if total is None:
        return click.style("unavailable", fg="bright_black")
    return f"{ready}/{total} ready"


def _print_overview(data: dict[str, object]) -> None:
    health = str(data.get("health", "unknown"))
    click.echo(click.style(f"Cluster {data.get('cluster_id', '?')}", bold=True) + "  health: " + _styled(health))
    click.echo("")
    click.echo(f"  Nodes:       {_ratio(data.get('ready_nodes'), data.get('node_count'))}")
    click.echo(f"  Pods:        {_ratio(data.get('ready_pods'), data.get('pod_count'))}")
    namespaces = data.get("namespace_count")
    if namespaces is not None:
        click.echo(f"  Namespaces:  {namespaces}")

    phases: dict[str, int] = data.get("pod_phases") or {}  # type: ignore[assignment]
    if phases:
        click.echo("")
        click.echo(click.style("Pod Phases:", bold=True))
        for phase, count in sorted(phases.items()):
            color = "green" if phase in ("Running", "Succeeded") else "yellow" if phase == "Pending" else "red"
            padding = max(0, 12 - len(phase)) * " "
            click.echo(f"  {click.style(phase, fg=color)}{padding} {count}")

    workloads: dict[str, dict[str, int]] = data.get("workloads") or {}  # type: ignore[assignment]
    if workloads:
        click.echo("")
        click.echo(click.style("Workloads:", bold=True))
        for kind, summary in sorted(workloads.items()):
            count, ready = summary.get("count", 0), summary.get("ready", 0)
            color = "green" if ready >= count else "yellow"
            padding = max(0, 12 - len(kind)) * " "
            click.echo(f"  {kind}{padding} {click.style(f'{ready}/{count}', fg=color)}")


# ---------------------------------------------------------------------------
# kubepolaris resources
# ---------------------------------------------------------------------------


@cli.command("resources")
@click.argument("cluster_id")
@click.argument("kind")
@click.option("--namespace", "-n", default=None, metavar="NS", help="Restrict to one namespace.")
@click.option("--selector", "-l", default=None, metavar="SELECTOR", help="Equality label selector, e.g. app=web.")
@_json_option
@click.pass_context
def cmd_resources(
    ctx: click.Context,
    cluster_id: str,
    kind: str,
    namespace: str | None,
    selector: str | None,
    output_json: bool,
) -> None:
    """List cached KIND objects of CLUSTER_ID.

    Example:

        kubepolaris resources prod pods -n default
    """
    params: dict[str, str] = {}
    if namespace:
        params["namespace"] = namespace
    if selector:
        params["label_selector"] = selector

    data = _get(ctx.obj["api_url"], f"/api/v1/clusters/{cluster_id}/resources/{kind}", params=params)
    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    if not data.get("available", False):
        click.echo(click.style(f"{data.get('kind', kind)} is not available on cluster {cluster_id}.", fg="yellow"))
        return

    items: list[dict[str, object]] = data.get("items", [])  # type: ignore[assignment]
    click.echo(click.style(f"{data.get('kind', kind)} ({len(items)}):", bold=True))
    for item in items:
        metadata: dict[str, object] = item.get("metadata") or {}  # type: ignore[assignment]
        ns = metadata.get("namespace")
        name = str(metadata.get("name", "?"))
        click.echo(f"  {ns}/{name}" if ns else f"  {name}")


# ---------------------------------------------------------------------------
# kubepolaris evict
# ---------------------------------------------------------------------------


@cli.command("evict")
@click.argument("cluster_id")
@click.pass_context
def cmd_evict(ctx: click.Context, cluster_id: str) -> None:
    """Stop the informers of CLUSTER_ID and drop its cache."""
    _delete(ctx.obj["api_url"], f"/api/v1/clusters/{cluster_id}/cache")
    click.echo(f"Evicted cache for cluster {cluster_id}.")


# ---------------------------------------------------------------------------
# kubepolaris serve
# ---------------------------------------------------------------------------


@cli.command("serve")
def cmd_serve() -> None:
    """Run the API server until SIGTERM or SIGINT (configured via KUBEPOLARIS_* env vars)."""
    from kubepolaris.app import main

    asyncio.run(main())


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
