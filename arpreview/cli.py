"""
arpreview CLI - serve the AR demo over HTTPS and convert models for iOS
"""

import click
import logging
import sys
from arpreview.config import (
    DEFAULT_INPUT_PATH,
    DEFAULT_OUTPUT_PATH,
    ConversionSettings,
    ServerSettings,
)
from arpreview.converters.convert import convert as convert_model
from arpreview.exceptions import (
    ConversionTimeoutError,
    ModelExportError,
    ModelParseError,
    ModelReadError,
)
from arpreview.server import create_server


def _configure_logging(verbose):
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )


@click.group()
@click.version_option(package_name="arpreview")
def cli():
    """
    arpreview - Local AR preview tooling.

    Examples:
        arpreview serve
        arpreview convert model.glb model.usdz
    """
    pass


@cli.command()
@click.option('--host', default=None, help="Interface to bind (default: all interfaces)")
@click.option('--port', type=int, default=None, help='HTTPS port (default: 8443)')
@click.option('--fallback-port', type=int, default=None, help='HTTP port used if no certificate can be generated (default: 3000)')
@click.option('--directory', '-d', default=None, help='Directory to serve (default: public)')
@click.option('--cert', default=None, help='Certificate path (default: cert.pem)')
@click.option('--key', default=None, help='Private key path (default: key.pem)')
@click.option('--verbose', '-v', is_flag=True, help='Log every request')
def serve(host, port, fallback_port, directory, cert, key, verbose):
    """
    Serve a directory over HTTPS for testing on mobile devices.

    A self-signed certificate is generated with openssl if cert/key are
    missing. If that fails, the server falls back to plain HTTP.

    Examples:
        arpreview serve
        arpreview serve --port 9443 -d dist
    """
    _configure_logging(verbose)

    try:
        settings = ServerSettings.from_env(
            host=host,
            port=port,
            fallback_port=fallback_port,
            directory=directory,
            cert_path=cert,
            key_path=key,
        )
        server = create_server(settings)
    except ValueError as e:
        click.secho(f"Error: {e}", fg='red', err=True)
        sys.exit(1)
    except OSError as e:
        click.secho(f"Could not start server: {e}", fg='red', err=True)
        sys.exit(1)

    if not server.secure:
        click.secho(f"\nStarting HTTP server instead on port {server.port}...", fg='yellow')
    for line in server.banner():
        click.echo(line)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        click.echo("\nServer stopped")
    finally:
        server.httpd.server_close()


@cli.command()
@click.argument('input_path', required=False, default=DEFAULT_INPUT_PATH)
@click.argument('output_path', required=False, default=DEFAULT_OUTPUT_PATH)
@click.option('--max-texture-size', type=int, default=None, help='Downscale larger textures (default: 1024)')
@click.option('--no-anchoring', is_flag=True, help='Omit AR Quick Look plane anchoring')
@click.option('--timeout', type=float, default=None, help='Give up on a stage after this many seconds')
@click.option('--verbose', '-v', is_flag=True, help='Show detailed conversion info')
def convert(input_path, output_path, max_texture_size, no_anchoring, timeout, verbose):
    """
    Convert a GLB/glTF model to USDZ for AR Quick Look.

    Supported formats: .glb, .gltf → .usdz, .usda

    Examples:
        arpreview convert model.glb model.usdz
        arpreview convert scene.gltf scene.usda
    """
    _configure_logging(verbose)

    try:
        settings = ConversionSettings.from_env(
            max_texture_size=max_texture_size,
            include_anchoring=False if no_anchoring else None,
            timeout=timeout,
        )

        if verbose:
            click.echo("Initializing environment...")
        click.echo(f"Converting: {input_path} → {output_path}")

        result = convert_model(input_path, output_path, settings)

        click.secho(f"✓ Success! Saved to {result.output_path}", fg='green')
        click.echo(f"Size: {result.size_mb:.2f} MB")

    except FileNotFoundError as e:
        click.secho(f"Error reading file: {e}", fg='red', err=True)
        sys.exit(1)
    except ModelReadError as e:
        click.secho(f"Error reading file: {e}", fg='red', err=True)
        sys.exit(1)
    except ModelParseError as e:
        click.secho(f"Error parsing model: {e}", fg='red', err=True)
        sys.exit(1)
    except ModelExportError as e:
        click.secho(f"Error exporting USDZ: {e}", fg='red', err=True)
        sys.exit(1)
    except ConversionTimeoutError as e:
        click.secho(f"Timeout Error: {e}", fg='red', err=True)
        sys.exit(1)
    except ValueError as e:
        click.secho(f"Error: {e}", fg='red', err=True)
        sys.exit(1)
    except Exception as e:
        click.secho(f"Unexpected error: {e}", fg='red', err=True)
        if verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


def main():
    """Entry point for the CLI"""
    cli()


if __name__ == '__main__':
    main()
