"""Typer-powered command line for ``launchd-activate``.

``launchd-activate NEW [OLD]`` installs the launchd definitions found in NEW,
removes the ones that only existed in OLD, and restarts exactly the services
whose definitions changed. The exit status is the number of failed
operations.
"""
from __future__ import annotations

import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .executor import ActionResult, PlanExecutor
from .exit_codes import ExitCode, exit_status_for
from .identity import (
    ActivationScope,
    DirectoryKind,
    DomainTarget,
    ServiceDirectory,
    ServiceDirectoryError,
    current_console_uid,
    current_gui_domain,
)
from .logging import OperationScope, StructuredLogger
from .plan import Plan, prepare_plan
from .providers import FileInstaller, InstallMethod, LaunchctlProvider, ServiceManager

console = Console(stderr=True, soft_wrap=True)
stdout_console = Console(soft_wrap=True)

USAGE = "usage: launchd-activate [--system | --user | --user-all] NEW [OLD]"

# Copy installs are the default wherever root owns the destination.
_DEFAULT_INSTALL_METHOD = {
    ActivationScope.SYSTEM: InstallMethod.COPY,
    ActivationScope.ALL_USERS: InstallMethod.COPY,
    ActivationScope.USER: InstallMethod.SYMLINK,
}


def _version_callback(value: bool) -> None:
    if value:
        console.print(__version__, highlight=False)
        raise typer.Exit(code=int(ExitCode.OK))


app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help=textwrap.dedent(
        """
        Activate a directory of launchd service definitions.

        Services present only in NEW are installed and bootstrapped, services
        present only in OLD are booted out and removed, and services present in
        both are restarted only when their installed definition changed.
        """
    ).strip(),
)


@dataclass(slots=True)
class RuntimeContext:
    """Objects shared by a single activation run."""

    config: AppConfig
    logger: StructuredLogger
    scope: ActivationScope
    domain: DomainTarget
    destination: ServiceDirectory
    install_method: InstallMethod
    service_manager: ServiceManager
    installer: FileInstaller


def _build_service_manager(config: AppConfig) -> ServiceManager:
    return LaunchctlProvider(
        launchctl_bin=config.launchctl.launchctl_bin,
        sudo_bin=config.launchctl.sudo_bin,
    )


def _build_installer(config: AppConfig) -> FileInstaller:
    return FileInstaller(
        sudo_bin=config.launchctl.sudo_bin,
        ln_bin=config.commands.ln_bin,
        cp_bin=config.commands.cp_bin,
        rm_bin=config.commands.rm_bin,
    )


def _select_scope(system: bool, user: bool, user_all: bool) -> ActivationScope:
    chosen = [
        scope
        for scope, flag in (
            (ActivationScope.SYSTEM, system),
            (ActivationScope.USER, user),
            (ActivationScope.ALL_USERS, user_all),
        )
        if flag
    ]
    if len(chosen) > 1:
        _usage_error("--system, --user and --user-all are mutually exclusive")
    return chosen[0] if chosen else ActivationScope.USER


def _resolve_destination(scope: ActivationScope, config: AppConfig) -> ServiceDirectory:
    directories = config.directories
    if scope is ActivationScope.SYSTEM:
        return ServiceDirectory.system(directories.system)
    if scope is ActivationScope.ALL_USERS:
        return ServiceDirectory.all_users(directories.all_users)
    if scope is ActivationScope.USER:
        if directories.user is not None:
            return ServiceDirectory(DirectoryKind.USER, directories.user)
        return ServiceDirectory.current_user()
    raise ValueError(f"Unsupported activation scope: {scope!r}")


def _resolve_domain(scope: ActivationScope) -> DomainTarget:
    if scope is ActivationScope.SYSTEM:
        return DomainTarget.system()
    return current_gui_domain(current_console_uid)


def _select_install_flag(copy: bool, symlink: bool) -> InstallMethod | None:
    if copy and symlink:
        _usage_error("--copy and --symlink are mutually exclusive")
    if copy:
        return InstallMethod.COPY
    if symlink:
        return InstallMethod.SYMLINK
    return None


def _resolve_install_method(
    scope: ActivationScope,
    config: AppConfig,
    method_flag: InstallMethod | None,
) -> InstallMethod:
    if method_flag is not None:
        return method_flag
    if config.install_method != "auto":
        return InstallMethod(config.install_method)
    return _DEFAULT_INSTALL_METHOD[scope]


def _usage_error(message: str) -> NoReturn:
    console.print(USAGE, highlight=False)
    console.print(f"[red]error:[/red] {escape(message)}")
    raise typer.Exit(code=int(ExitCode.FATAL))


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = int(ExitCode.FATAL),
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]error:[/red] {escape(message)}")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _resolve_source(path: Path) -> Path:
    resolved = path.expanduser().resolve()
    if not resolved.exists():
        _usage_error(f"{resolved} does not exist")
    return resolved


def _echo_result(result: ActionResult) -> None:
    if not result.ok:
        console.print(f"[red]error:[/red] {escape(result.detail)}")
        return
    if result.command:
        label = result.command
    else:
        label = f"{result.action} {result.subject}"
    if result.dry_run:
        console.print(f"[yellow]\\[DRY RUN][/yellow] {escape(label)}")
    else:
        console.print(f"+ {escape(label)}", highlight=False)


def _render_plan(plan: Plan, *, verbose: bool) -> None:
    for line in plan.summary_lines():
        console.print(escape(line), highlight=False)
    if verbose and plan.skipped:
        console.print("")
        console.print("Up to date (no action):", highlight=False)
        for name in plan.skipped:
            console.print(f"  • {escape(name)}", highlight=False)
    console.print("")


def _operation_target(runtime: RuntimeContext) -> Mapping[str, object]:
    return {
        "scope": runtime.scope.value,
        "domain": str(runtime.domain),
        "directory": str(runtime.destination),
        "install_method": runtime.install_method.value,
    }


def _build_runtime(
    config_file: Path | None,
    scope: ActivationScope,
    method_flag: InstallMethod | None,
    timeout: float | None,
) -> RuntimeContext:
    overrides: dict[str, object] = {}
    if timeout is not None:
        overrides["stop_timeout"] = timeout
        overrides["start_timeout"] = timeout
    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=int(ExitCode.FATAL)) from exc

    return RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        scope=scope,
        domain=_resolve_domain(scope),
        destination=_resolve_destination(scope, config),
        install_method=_resolve_install_method(scope, config, method_flag),
        service_manager=_build_service_manager(config),
        installer=_build_installer(config),
    )


@app.command()
def activate(
    new: Path = typer.Argument(..., help="Directory holding the desired definitions."),
    old: Path | None = typer.Argument(
        None,
        help="Directory holding the previously activated definitions.",
    ),
    system: bool = typer.Option(False, "--system", help="Manage system daemons."),
    user: bool = typer.Option(False, "--user", help="Manage the current user's agents (default)."),
    user_all: bool = typer.Option(False, "--user-all", help="Manage agents for all users."),
    copy: bool = typer.Option(False, "--copy", help="Install definitions as standalone copies."),
    symlink: bool = typer.Option(
        False,
        "--symlink",
        help="Install definitions as symlinks into NEW.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Show what would change without touching files or services.",
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        min=0.001,
        help="Seconds to wait for each service to load or unload.",
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit the plan and results as JSON."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Also list unchanged services."),
    config_file: Path | None = typer.Option(
        None,
        "--config-file",
        dir_okay=False,
        help="Override the path to the YAML config file.",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show the launchd-activate version and exit.",
    ),
) -> None:
    """Reconcile installed launchd definitions with NEW (replacing OLD)."""
    scope = _select_scope(system, user, user_all)
    method_flag = _select_install_flag(copy, symlink)
    new_path = _resolve_source(new)
    old_path = old.expanduser().resolve() if old is not None else None
    runtime = _build_runtime(config_file, scope, method_flag, timeout)

    args = {
        "new": new_path,
        "old": old_path,
        "dry_run": dry_run,
        "json": json_output,
    }
    with runtime.logger.operation("activate", args=args, target=_operation_target(runtime)) as op:
        try:
            plan = prepare_plan(
                runtime.domain,
                runtime.destination,
                new_path,
                old_path,
                service_manager=runtime.service_manager,
                install_method=runtime.install_method,
            )
        except ServiceDirectoryError as exc:
            _command_error(op, str(exc))

        for warning in plan.warnings:
            console.print(f"[yellow]warning:[/yellow] {escape(warning)}")
            op.add_step("plan.warning", status="warning", detail=warning)
        op.add_step("plan.prepare", status="success", detail=f"{plan.total_operations} operations")

        if dry_run or verbose:
            _render_plan(plan, verbose=verbose)

        executor = PlanExecutor(
            service_manager=runtime.service_manager,
            installer=runtime.installer,
            install_method=runtime.install_method,
            stop_timeout=runtime.config.stop_timeout,
            start_timeout=runtime.config.start_timeout,
            poll_interval=runtime.config.poll_interval,
            on_result=None if json_output else _echo_result,
        )
        try:
            report = executor.run(plan, dry_run=dry_run)
        except KeyboardInterrupt:
            _command_error(
                op,
                "Interrupted; remaining operations skipped.",
                rc=int(ExitCode.INTERRUPTED),
            )

        for result in report.results:
            op.add_step(
                f"{result.phase.value}.{result.action}",
                status="success" if result.ok else "error",
                detail=f"{result.subject}: {result.detail}" if result.detail else result.subject,
            )

        if json_output:
            stdout_console.print_json(
                data={"plan": plan.to_dict(), "execution": report.to_dict()}
            )

        code = exit_status_for(report.error_count)
        changed = report.changed_count
        if report.error_count:
            console.print(f"[red]{report.error_count} operation(s) failed.[/red]")
            op.error(
                f"{report.error_count} operation(s) failed.",
                errors=[result.detail for result in report.failures],
                changed=changed,
                rc=code,
                context={"failed": report.error_count},
            )
            raise typer.Exit(code=code)

        if dry_run:
            console.print("[yellow]Dry run[/yellow]: no changes were made.")
            message = "Dry run complete."
        elif plan.is_empty:
            console.print("[green]Nothing to do; all services are up to date.[/green]")
            message = "No changes required."
        else:
            console.print(f"[green]Activated {plan.total_operations} operation(s).[/green]")
            message = "Activation complete."
        context = {"planned": plan.total_operations}
        if plan.warnings:
            op.warning(message, warnings=plan.warnings, changed=changed, context=context)
        else:
            op.success(message, changed=changed, context=context)

    raise typer.Exit(code=code)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
