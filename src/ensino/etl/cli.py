from dotenv import load_dotenv, find_dotenv
load_dotenv(find_dotenv(usecwd=True))

import os
from pathlib import Path
import sys
from typing import Mapping

import click

from loguru import logger

from ensino.api.directory import Client
from ensino.etl import migration

FILE_SINK_DEFAULTS = {
    'rotation': '1 month',
    'retention': '1 year',
    'compression': 'gz',
}

def env_flag(value) -> bool:
    '''Values from a .env file are always strings, so "0", "false" and "" are off.'''
    return str(value).strip().lower() not in ('0', 'false', 'no', 'none', '')

def log_sink_settings(environ:Mapping = os.environ) -> tuple:
    '''The loguru sink and the keyword arguments for ``logger.add``.

    Rotation, retention and compression apply only to a file sink, and loguru
    rejects them for a stream.
    '''
    params = {
        'level': environ.get('ENSINO_ETL_LOG_LEVEL', 'INFO'),
        'serialize': env_flag(environ.get('ENSINO_ETL_LOG_SERIALIZE', '')),
    }
    log_file = environ.get('ENSINO_ETL_LOG_FILE')
    if not log_file:
        return sys.stderr, params
    for setting, default in FILE_SINK_DEFAULTS.items():
        params[setting] = environ.get(f'ENSINO_ETL_LOG_{setting.upper()}', default)
    return log_file, params

def configure_logger() -> None:
    sink, params = log_sink_settings()
    logger.remove()
    logger.add(sink, **params)

configure_logger()

@click.group()
def etl():
    '''Load a CSV export of universities, sub-units and courses into the
    institutions directory API.'''

@etl.command()
@click.argument(
    'csv_path',
    default=migration.DEFAULT_CSV_PATH,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
def migrate(csv_path):
    '''Create the universities, sub-units and courses in CSV_PATH that the
    directory API does not have yet, and link each course to its sub-unit.'''
    if not os.environ.get('BASE_URL'):
        raise click.ClickException('BASE_URL is not set. Set it in the environment or in a .env file.')
    logger.info(f'Migrating {csv_path} into {os.environ["BASE_URL"]}')
    with Client() as client:
        migration.run(client, csv_path)
