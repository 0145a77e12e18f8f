"""
Command Line Interface for the node registration server
"""
import asyncio
import json
import sys

import aiocoap
import click
from aiocoap.error import Error as CoapError

from .backend import DirectoryCacheBackend
from .config import Config, BackendConfig, parse_backends
from .discovery import COAP_PORT
from .logger import get_logger, setup_logging
from .server import RegistrationServer

logger = get_logger(__name__)


@click.group()
@click.option('--config', '-c', 'config_file', help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx, config_file, verbose):
    """CoAP node registration server"""
    config = Config.load_from_file(config_file) if config_file else Config.from_env()
    if verbose:
        config.logging.level = 'DEBUG'

    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--host', help='Address to bind to')
@click.option('--port', type=int, help='Port to bind to')
@click.option('--workers', type=int, help='Number of registration workers')
@click.option('--backend', 'backends', multiple=True,
              help='Backend as prefix=path_prefix (can be specified multiple times)')
@click.pass_context
def serve(ctx, host, port, workers, backends):
    """Start the registration server"""
    config: Config = ctx.obj['config']
    if host:
        config.server.host = host
    if port:
        config.server.port = port
    if workers:
        config.server.workers = workers
    try:
        config.backends.extend(parse_backends(list(backends)))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--backend')
    setup_logging(config.logging.level, config.logging.file, config.logging.format)

    if not config.backends:
        click.echo("Warning: no backends configured, every announcement will be ignored", err=True)

    server = RegistrationServer(config.server)
    for backend in config.backends:
        server.add_backend(DirectoryCacheBackend(backend.prefix, backend.path_prefix))
        logger.info(f"Backend {backend.path_prefix} owns nodes matching '{backend.prefix}'")

    async def run():
        await server.start()
        try:
            await asyncio.Event().wait()
        finally:
            await server.stop()

    click.echo(f"Starting registration server on [{config.server.host}]:{config.server.port}")
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("\nRegistration server stopped")


@cli.command()
@click.argument('target')
@click.option('--port', default=COAP_PORT, type=int, help='Port of the registration server')
@click.option('--non', 'non_confirmable', is_flag=True, help='Send a non-confirmable announcement')
@click.pass_context
def announce(ctx, target, port, non_confirmable):
    """Announce this host to the registration server at TARGET"""
    config: Config = ctx.obj['config']
    setup_logging(config.logging.level, config.logging.file, config.logging.format)
    host = f"[{target}]" if ':' in target and not target.startswith('[') else target
    uri = f"coap://{host}:{port}/{config.server.registration_path}"

    async def send():
        context = await aiocoap.Context.create_client_context()
        try:
            tuning = aiocoap.Unreliable() if non_confirmable else aiocoap.Reliable()
            request = aiocoap.Message(transport_tuning=tuning,
                                      code=aiocoap.POST, uri=uri)
            if non_confirmable:
                context.request(request)
                # give the transport a moment to put the message on the wire
                await asyncio.sleep(0.5)
                click.echo(f"Announcement sent to {uri}")
                return
            response = await context.request(request).response
            click.echo(f"{uri}: {response.code}")
        finally:
            await context.shutdown()

    try:
        asyncio.run(send())
    except CoapError as e:
        click.echo(f"Announcement failed: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option('--output', '-o', default='registration_config.json', help='Output configuration file')
@click.option('--backend', 'backends', multiple=True, help='Backend as prefix=path_prefix')
def init_config(output, backends):
    """Initialize a configuration file with default settings"""
    config = Config(backends=parse_backends(list(backends)) or [
        BackendConfig(prefix='fe80::', path_prefix='/local')
    ])
    config.save_to_file(output)
    click.echo(f"Configuration file created: {output}")
    click.echo(json.dumps(config.model_dump()['server'], indent=2))
    click.echo("Edit the file to customize settings, then use:")
    click.echo(f"  coap-registration --config {output} serve")


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
