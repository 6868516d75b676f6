import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import typer

from pymailcloud import CloudClient, CloudError, save_credentials

app = typer.Typer()


def _run(ctx: typer.Context, action: Callable[[CloudClient], Any]) -> Any:
    try:
        with CloudClient.from_config(ctx.obj["config"]) as cloud:
            return action(cloud)
    except (CloudError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="Credentials file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@app.command()
def login(ctx: typer.Context, email: str):
    password = typer.prompt("Password", hide_input=True)
    try:
        CloudClient.from_credentials(email, password).close()
    except CloudError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e
    path = save_credentials(email, password, ctx.obj["config"])
    typer.echo(f"Credentials saved to {path}")


@app.command()
def usage(ctx: typer.Context):
    disk = _run(ctx, lambda cloud: cloud.account.get_disk_usage())
    typer.echo(f"total: {disk.total}  used: {disk.used}  free: {disk.free}")


@app.command()
def ls(ctx: typer.Context, path: str = typer.Argument("/")):
    def listing(cloud: CloudClient) -> list[str]:
        folder = cloud.get_folder(path)
        if folder is None:
            raise typer.BadParameter(f"{path} is not a folder")
        lines = [f"{item.name}/" for item in folder.get_folders()]
        lines += [f"{item.name}\t{item.size}" for item in folder.get_files()]
        return lines

    for line in _run(ctx, listing):
        typer.echo(line)


@app.command()
def mkdir(ctx: typer.Context, path: str):
    folder = _run(ctx, lambda cloud: cloud.create_folder(path))
    typer.echo(folder.full_path)


@app.command()
def rm(ctx: typer.Context, path: str):
    _run(ctx, lambda cloud: cloud.remove(path))


@app.command()
def put(ctx: typer.Context, local: Path, remote_folder: str = typer.Argument("/")):
    file = _run(ctx, lambda cloud: cloud.upload_file("", local, remote_folder))
    typer.echo(f"{file.full_path}\t{file.size}")


@app.command()
def get(ctx: typer.Context, remote: str, local: Path):
    def download(cloud: CloudClient) -> int:
        stream, _ = cloud.download_file(remote)
        with stream, local.open("wb") as f:
            return stream.copy_to(f)

    typer.echo(f"{_run(ctx, download)} bytes written to {local}")


@app.command()
def publish(ctx: typer.Context, path: str):
    typer.echo(_run(ctx, lambda cloud: cloud.publish(path)).public_link)


@app.command()
def unpublish(ctx: typer.Context, link: str):
    typer.echo(_run(ctx, lambda cloud: cloud.unpublish(link)).full_path)


@app.command()
def history(ctx: typer.Context, path: str):
    for entry in _run(ctx, lambda cloud: cloud.get_file_history(path)):
        marker = "*" if entry.is_current_version else " "
        typer.echo(
            f"{marker} {entry.revision}\t{entry.last_modified_utc:%Y-%m-%d %H:%M:%S}\t{entry.size}"
        )


if __name__ == "__main__":
    app()
