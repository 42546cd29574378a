"""dxcli: describe platform objects from the terminal."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import sys

import click

from .client import DEFAULT_API_URL, DxApiClient
from .describe import EXIT_USAGE, BatchReport, DescribeError, describe_many
from .errors import DxError, GatewayError
from .formatters import TEXT_SEPARATOR
from .models import RenderOptions
from .normalizers import ClassNormalizer

_CONFIG_FILE_NAME = "dx_env.json"

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def _config_path() -> Path:
    override = os.environ.get("DX_USER_CONF_DIR")
    if override:
        return Path(override).expanduser() / _CONFIG_FILE_NAME
    return Path.home() / ".dnanexus_config" / _CONFIG_FILE_NAME


def _check_config_permissions(path: Path, payload: dict) -> None:
    if os.name == "nt":
        return
    if "auth_token" not in payload:
        return
    mode = path.stat().st_mode & 0o777
    if mode & 0o077:
        raise DxError("CONFIG", f"Insecure config permissions on {path} (expected 600)")


def _read_session_config() -> tuple[dict, str | None]:
    """Read the session file written by ``dx login``, if any."""
    path = _config_path()
    if not path.exists():
        return {}, None
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise DxError("CONFIG", f"Unable to read config file: {path}") from exc
    except json.JSONDecodeError as exc:
        raise DxError("CONFIG", f"Invalid JSON in config file: {path}") from exc

    if not isinstance(parsed, dict):
        raise DxError("CONFIG", f"Config file must contain a JSON object: {path}")

    _check_config_permissions(path, parsed)
    return parsed, str(path)


def _api_url_from_config(config: dict) -> str | None:
    host = config.get("apiserver_host")
    if not host:
        return None
    protocol = config.get("apiserver_protocol") or "https"
    port = config.get("apiserver_port")
    if port in (None, "") or (protocol, int(port)) in {("https", 443), ("http", 80)}:
        return f"{protocol}://{host}"
    return f"{protocol}://{host}:{port}"


def _resolve_setting(flag_value, env_name: str, config_value, default_value):
    if flag_value is not None:
        return flag_value
    env_value = os.environ.get(env_name)
    if env_value not in (None, ""):
        return env_value
    if config_value is not None:
        return config_value
    return default_value


def _build_normalizer(required_fields) -> ClassNormalizer:
    if required_fields is None:
        return ClassNormalizer()
    if not isinstance(required_fields, dict) or not all(
        isinstance(v, list) and all(isinstance(f, str) for f in v) for v in required_fields.values()
    ):
        raise DxError("CONFIG", "required_fields must map class names to lists of field names")
    try:
        return ClassNormalizer(required_fields)
    except ValueError as exc:
        raise DxError("CONFIG", str(exc)) from exc


def _exit_with_error(err: DxError) -> None:
    click.echo(f"Error: {err.code}: {err.message}", err=True)
    sys.exit(EXIT_USAGE)


def _configure_logging(debug: bool) -> None:
    if debug:
        logging.basicConfig(level=logging.DEBUG, format=_LOG_FORMAT, stream=sys.stderr, force=True)


@click.group()
@click.option("--auth-token", default=None, help="API token (or set DX_AUTH_TOKEN)")
@click.option("--api-url", default=None, help="API server URL")
@click.option("--timeout", default=None, type=float, help="Per-request timeout in seconds.")
@click.option("--retries", default=None, type=int, help="Retries for transient failures.")
@click.option("--retry-backoff-ms", default=None, type=int, help="Base retry backoff in milliseconds.")
@click.option("--max-concurrency", default=None, type=int, help="Max parallel describe requests.")
@click.pass_context
def main(
    ctx,
    auth_token: str | None,
    api_url: str | None,
    timeout: float | None,
    retries: int | None,
    retry_backoff_ms: int | None,
    max_concurrency: int | None,
):
    """Command-line client for the platform API."""
    ctx.ensure_object(dict)
    try:
        file_config, config_path = _read_session_config()
        resolved_token = _resolve_setting(auth_token, "DX_AUTH_TOKEN", file_config.get("auth_token"), None)
        resolved_api_url = _resolve_setting(
            api_url,
            "DX_API_URL",
            _api_url_from_config(file_config),
            DEFAULT_API_URL,
        )
        resolved_timeout = float(_resolve_setting(timeout, "DX_TIMEOUT", file_config.get("timeout"), 30.0))
        resolved_retries = int(_resolve_setting(retries, "DX_RETRIES", file_config.get("retries"), 2))
        resolved_retry_backoff_ms = int(
            _resolve_setting(
                retry_backoff_ms,
                "DX_RETRY_BACKOFF_MS",
                file_config.get("retry_backoff_ms"),
                250,
            )
        )
        resolved_max_concurrency = int(
            _resolve_setting(max_concurrency, "DX_MAX_CONCURRENCY", file_config.get("max_concurrency"), 8)
        )
        if resolved_timeout <= 0 or resolved_timeout > 300:
            raise DxError("CONFIG", "timeout must be > 0 and <= 300 seconds")
        if resolved_retries < 0 or resolved_retries > 10:
            raise DxError("CONFIG", "retries must be between 0 and 10")
        if resolved_retry_backoff_ms < 0 or resolved_retry_backoff_ms > 60000:
            raise DxError("CONFIG", "retry_backoff_ms must be between 0 and 60000")
        if resolved_max_concurrency < 1 or resolved_max_concurrency > 64:
            raise DxError("CONFIG", "max_concurrency must be between 1 and 64")
        normalizer = _build_normalizer(file_config.get("required_fields"))
    except ValueError as exc:
        _exit_with_error(DxError("CONFIG", f"Invalid setting: {exc}"))
    except DxError as e:
        _exit_with_error(e)

    ctx.obj["timeout"] = resolved_timeout
    ctx.obj["retries"] = resolved_retries
    ctx.obj["retry_backoff_ms"] = resolved_retry_backoff_ms
    ctx.obj["max_concurrency"] = resolved_max_concurrency
    ctx.obj["normalizer"] = normalizer
    ctx.obj["config_path"] = config_path
    if ctx.invoked_subcommand == "config":
        return

    if not resolved_token:
        _exit_with_error(DxError("CONFIG", "Not logged in. Set DX_AUTH_TOKEN or pass --auth-token."))
    client = DxApiClient(resolved_token, resolved_api_url, timeout=resolved_timeout)
    ctx.obj["client"] = client
    ctx.call_on_close(client.close)


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@main.group()
def config():
    """Inspect local session configuration."""


@config.command(name="path")
@click.pass_context
def config_path(ctx):
    """Show the session config path."""
    cfg_path = ctx.obj.get("config_path") or str(_config_path())
    state = "exists" if Path(cfg_path).exists() else "missing"
    click.echo(f"{cfg_path} ({state})")


# ---------------------------------------------------------------------------
# describe
# ---------------------------------------------------------------------------


def _echo_failure(error: DescribeError, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(error.as_dict(), sort_keys=True, separators=(",", ":")), err=True)
    else:
        click.echo(str(error), err=True)


def _echo_fatal(err: GatewayError, as_json: bool) -> None:
    if as_json:
        payload = {
            "error": {
                "category": "gateway",
                "kind": err.kind,
                "code": err.code,
                "message": err.message,
                "status": err.status_code,
            }
        }
        click.echo(json.dumps(payload, sort_keys=True, separators=(",", ":")), err=True)
    else:
        click.echo(f"Error: {err.code}: {err.message}", err=True)


def _emit_report(report: BatchReport, as_json: bool) -> None:
    emitted = 0
    for result in report.results:
        if not result.ok:
            _echo_failure(result.error, as_json)
            continue
        if emitted and not as_json:
            click.echo(TEXT_SEPARATOR)
        click.echo(result.output)
        if result.trace:
            click.echo(result.trace)
        emitted += 1

    if report.fatal is not None:
        _echo_fatal(report.fatal, as_json)
    if report.interrupted:
        click.echo(f"Interrupted after {len(report.results)} of {report.total} identifiers", err=True)


@main.command()
@click.argument("ids", nargs=-1, required=True)
@click.option("--json", "as_json", is_flag=True, help="Emit JSON instead of a text report.")
@click.option("--debug", "-d", is_flag=True, help="Attach a diagnostic trace and log requests.")
@click.option("--try", "try_number", default=None, type=click.IntRange(min=0), help="Job try to describe.")
@click.pass_context
def describe(ctx, ids, as_json, debug, try_number):
    """Describe one or more objects by id.

    Accepts ids such as file-XXXX, job-XXXX or project-XXXX:file-YYYY.
    """
    _configure_logging(debug)
    report = describe_many(
        ids,
        RenderOptions(json=as_json, debug=debug),
        ctx.obj["client"],
        normalizer=ctx.obj["normalizer"],
        max_concurrency=ctx.obj["max_concurrency"],
        retries=ctx.obj["retries"],
        retry_backoff_ms=ctx.obj["retry_backoff_ms"],
        try_number=try_number,
    )
    _emit_report(report, as_json)
    sys.exit(report.exit_code)


main.add_command(describe, name="desc")


if __name__ == "__main__":
    main()
