# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/cli/app.py
from __future__ import annotations

import threading
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from pydantic import ValidationError as PydanticValidationError

from kairos_capi.api.bootstrap import KAIROS_CONFIG_KIND, KairosConfig, KairosConfigSpec
from kairos_capi.bootstrap.cloud_config import CLOUD_CONFIG_HEADER, synthesize
from kairos_capi.bootstrap.data_secret import read_data_secret
from kairos_capi.bootstrap.reconciler import KairosConfigReconciler
from kairos_capi.config.loader import load_config
from kairos_capi.config.models import ControllerConfig
from kairos_capi.controlplane.reconciler import KairosControlPlaneReconciler
from kairos_capi.errors import KairosCapiError, is_terminal
from kairos_capi.kube.client import KubernetesStore, build_api_client
from kairos_capi.kube.store import StoreSecretLookup
from kairos_capi.logging.log import init_logging
from kairos_capi.observers.console import ConsoleObserver
from kairos_capi.observers.logger import LoggerObserver


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Kairos Cluster API bootstrap / control-plane provider CLI")


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _controller_config(
    config_path: Optional[Path],
    kubeconfig: Optional[str],
    context: Optional[str],
    namespace: Optional[str],
    verbose: bool,
) -> ControllerConfig:
    try:
        return load_config(
            config_path,
            kubeconfig=kubeconfig,
            context=context,
            namespace=namespace,
            verbose=verbose or None,
        )
    except (FileNotFoundError, PydanticValidationError, yaml.YAMLError) as e:
        raise typer.BadParameter(f"invalid controller config: {e}")


def _store(cfg: ControllerConfig) -> KubernetesStore:
    return KubernetesStore(
        build_api_client(cfg.kubeconfig, cfg.context, in_cluster=cfg.in_cluster)
    )


def _observers(cfg: ControllerConfig, logger) -> List:
    observers: List = [LoggerObserver(logger)]
    if cfg.console_events:
        observers.append(ConsoleObserver())
    return observers


def load_config_spec(path: Path) -> tuple[KairosConfigSpec, str]:
    """
    Read a KairosConfig manifest, or a bare spec mapping, from *path*.

    Returns the spec and the namespace to resolve secret references in.
    """
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise typer.BadParameter(f"{path} does not contain a mapping")
    try:
        if data.get("kind") == KAIROS_CONFIG_KIND:
            config = KairosConfig.model_validate(data)
            return config.spec, config.metadata.namespace
        return KairosConfigSpec.model_validate(data.get("spec", data)), "default"
    except PydanticValidationError as e:
        raise typer.BadParameter(f"{path} is not a valid KairosConfig: {e}")


def _fail(e: KairosCapiError) -> None:
    kind = "terminal" if is_terminal(e) else "retryable"
    typer.secho(f"{e.__class__.__name__} ({kind}): {e}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def render(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="KairosConfig manifest or spec YAML"),
    role: Optional[str] = typer.Option(None, "--role", help="control-plane or worker; defaults to spec.role"),
    server_address: str = typer.Option("", "--server-address", help="control plane endpoint for workers"),
    from_cluster: bool = typer.Option(False, "--from-cluster", help="resolve token secret references via the cluster"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="controller config YAML"),
    kubeconfig: Optional[str] = typer.Option(None, "--kubeconfig"),
    context: Optional[str] = typer.Option(None, "--context"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="write the document here instead of stdout"),
):
    """
    Render the Kairos cloud-config a KairosConfig would produce.
    """
    spec, namespace = load_config_spec(path)
    secrets = None
    if from_cluster:
        cfg = _controller_config(config_path, kubeconfig, context, None, False)
        secrets = StoreSecretLookup(_store(cfg))

    try:
        document = synthesize(
            spec,
            role or spec.role,
            server_address or spec.server_address,
            secrets=secrets,
            namespace=namespace,
        )
    except KairosCapiError as e:
        _fail(e)

    if output:
        output.write_text(document)
        typer.echo(f"wrote {output}")
    else:
        typer.echo(document, nl=False)


@app.command("reconcile-control-plane")
def reconcile_control_plane(
    name: str = typer.Argument(..., help="KairosControlPlane name"),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n"),
    config_path: Optional[Path] = typer.Option(None, "--config", envvar="KAIROS_CAPI_CONFIG"),
    kubeconfig: Optional[str] = typer.Option(None, "--kubeconfig"),
    context: Optional[str] = typer.Option(None, "--context"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    Run one reconcile pass for a KairosControlPlane.
    """
    cfg = _controller_config(config_path, kubeconfig, context, namespace, verbose)
    logger, _, log_path = init_logging(base_dir=cfg.log_dir, verbose=cfg.verbose)

    reconciler = KairosControlPlaneReconciler(
        _store(cfg),
        observers=_observers(cfg, logger),
        cancel=threading.Event(),
        env=cfg.env,
        context=cfg.context,
    )
    try:
        result = reconciler.reconcile(cfg.namespace, name)
    except KairosCapiError as e:
        logger.error(f"reconcile of {cfg.namespace}/{name} failed: {e}")
        _fail(e)

    status = result.status
    if status is not None:
        typer.echo(
            f"{cfg.namespace}/{name}: replicas={status.replicas} ready={status.ready_replicas} "
            f"initialized={status.initialized} requeue={result.requeue}"
        )
    for err in result.errors:
        typer.secho(f"  {err}", fg=typer.colors.YELLOW, err=True)
    typer.echo(f"log: {log_path}")


@app.command("reconcile-config")
def reconcile_config(
    name: str = typer.Argument(..., help="KairosConfig name"),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n"),
    config_path: Optional[Path] = typer.Option(None, "--config", envvar="KAIROS_CAPI_CONFIG"),
    kubeconfig: Optional[str] = typer.Option(None, "--kubeconfig"),
    context: Optional[str] = typer.Option(None, "--context"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    Run one reconcile pass for a KairosConfig.
    """
    cfg = _controller_config(config_path, kubeconfig, context, namespace, verbose)
    logger, _, log_path = init_logging(base_dir=cfg.log_dir, verbose=cfg.verbose)

    reconciler = KairosConfigReconciler(
        _store(cfg),
        observers=_observers(cfg, logger),
        cancel=threading.Event(),
        env=cfg.env,
        context=cfg.context,
    )
    try:
        config = reconciler.reconcile(cfg.namespace, name)
    except KairosCapiError as e:
        logger.error(f"reconcile of {cfg.namespace}/{name} failed: {e}")
        _fail(e)

    if config is None:
        typer.echo(f"{cfg.namespace}/{name}: not found")
        return
    status = config.status
    typer.echo(
        f"{cfg.namespace}/{name}: ready={status.ready} dataSecretName={status.data_secret_name or '-'}"
        + (f" failure={status.failure_reason}: {status.failure_message}" if status.failure_reason else "")
    )
    typer.echo(f"log: {log_path}")


def describe_document(document: str) -> List[str]:
    """Human-readable summary lines for a rendered cloud-config."""
    lines = []
    header_ok = document.startswith(CLOUD_CONFIG_HEADER + "\n")
    lines.append(f"header: {'ok' if header_ok else 'MISSING'}")
    try:
        doc = yaml.safe_load(document) or {}
    except yaml.YAMLError as e:
        lines.append(f"yaml: INVALID ({e})")
        return lines
    lines.append("yaml: ok")
    lines.append(f"hostname: {doc.get('hostname')}")
    users = [u.get("name") for u in doc.get("users") or []]
    lines.append(f"users: {', '.join(users) if users else '-'}")
    if "k0s" in doc:
        lines.append(f"role: control-plane args={doc['k0s'].get('args') or []}")
    elif "k0s-worker" in doc:
        lines.append(f"role: worker args={doc['k0s-worker'].get('args') or []}")
    else:
        lines.append("role: UNKNOWN (no k0s block)")
    paths = [f.get("path") for f in doc.get("write_files") or []]
    lines.append(f"write_files: {', '.join(paths) if paths else '-'}")
    return lines


@app.command()
def inspect(
    secret_name: str = typer.Argument(..., help="bootstrap data Secret name"),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n"),
    config_path: Optional[Path] = typer.Option(None, "--config", envvar="KAIROS_CAPI_CONFIG"),
    kubeconfig: Optional[str] = typer.Option(None, "--kubeconfig"),
    context: Optional[str] = typer.Option(None, "--context"),
    show: bool = typer.Option(False, "--show", help="print the full document"),
):
    """
    Decode a bootstrap data Secret and summarize the cloud-config inside.
    """
    cfg = _controller_config(config_path, kubeconfig, context, namespace, False)
    try:
        document = read_data_secret(_store(cfg), cfg.namespace, secret_name)
    except KairosCapiError as e:
        _fail(e)

    for line in describe_document(document):
        typer.echo(line)
    if show:
        typer.echo(document, nl=False)


if __name__ == "__main__":
    app()
