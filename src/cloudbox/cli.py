"""CLI entry point for CloudBox."""

from pathlib import Path

import click

from cloudbox import __version__
from cloudbox.config import load_config
from cloudbox.logging import setup_logging


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level.")
@click.pass_context
def main(ctx: click.Context, config: Path | None, verbose: bool) -> None:
    """CloudBox - pair cloud endpoints with a QR code and a PIN."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(
        ctx.obj["config"], level="DEBUG" if verbose else None
    )


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"cloudbox version {__version__}")


@main.group()
def qr() -> None:
    """QR credential commands."""
    pass


@qr.command("decode")
@click.argument("text")
@click.pass_context
def qr_decode(ctx: click.Context, text: str) -> None:
    """Decode the base64 TEXT of a pairing QR code."""
    from cloudbox.errors import FormatError
    from cloudbox.pairing.qr_codec import decode

    pairing = ctx.obj["config"].pairing
    try:
        credential = decode(text, pairing.build_mode, pairing.default_domain)
    except FormatError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Type: {credential.format_type.name.lower()}")
    click.echo(
        f"Entry point: "
        f"{credential.entry_point(pairing.build_mode, pairing.default_domain)}"
    )
    if credential.is_indirect:
        click.echo(f"Server id: {credential.server_id}")
    else:
        click.echo(f"Server public key: {credential.server_public_key.hex()}")


@qr.command("show")
@click.argument("public_key")
@click.option(
    "--suffix",
    "-s",
    default="",
    help="Entry point suffix (host, or host.domain).",
)
@click.option(
    "--png",
    type=click.Path(),
    default=None,
    help="Save QR code to a PNG file.",
)
@click.option(
    "--html",
    type=click.Path(),
    default=None,
    help="Save QR code to an HTML page.",
)
def qr_show(public_key: str, suffix: str, png: str | None, html: str | None) -> None:
    """Render a direct QR code for the hex PUBLIC_KEY of a server."""
    from cloudbox.errors import FormatError
    from cloudbox.pairing.qr_codec import QrCredential
    from cloudbox.pairing.qr_generator import QrGenerator

    try:
        generator = QrGenerator(QrCredential.direct(bytes.fromhex(public_key), suffix))
        text = generator.text
    except (ValueError, FormatError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if png:
        generator.to_png(png)
        click.echo(f"QR code saved to {png}")
    if html:
        Path(html).write_text(generator.to_html())
        click.echo(f"QR page saved to {html}")
    if not png and not html:
        click.echo(generator.to_terminal())
    click.echo(text)


@main.command()
@click.argument("key")
@click.argument("data")
def cipher(key: str, data: str) -> None:
    """Apply the XOR cipher to hex DATA with hex KEY.

    The operation is its own inverse: run it twice to get DATA back.
    """
    from cloudbox.crypto import transform

    try:
        output = transform(bytes.fromhex(key), bytes.fromhex(data))
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    click.echo(output.hex())


@main.group()
def clouds() -> None:
    """Server cloud storage commands."""
    pass


def _cloud_root(ctx: click.Context) -> Path:
    from cloudbox.instance import get_cloud_path

    root = ctx.obj["config"].cloud_root
    return Path(root).expanduser() if root else get_cloud_path(None, is_server=True)


@clouds.command("list")
@click.pass_context
def clouds_list(ctx: click.Context) -> None:
    """List server clouds stored on this machine."""
    from cloudbox.instance import CLOUD_DIR_NAME, get_cloud_ids

    root = _cloud_root(ctx)
    ids = get_cloud_ids(root)
    if not ids:
        click.echo(f"No clouds found in {root}.")
        return

    click.echo(f"{'ID':<6} {'Path'}")
    click.echo("-" * 50)
    for cloud_id in ids:
        click.echo(f"{cloud_id:<6} {root / f'{CLOUD_DIR_NAME}{cloud_id}'}")


@clouds.command("next-id")
@click.pass_context
def clouds_next_id(ctx: click.Context) -> None:
    """Show the id the next server cloud would get."""
    from cloudbox.instance import next_id_available

    click.echo(next_id_available(_cloud_root(ctx)))


if __name__ == "__main__":
    main()
