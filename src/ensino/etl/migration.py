from functools import reduce
from os import PathLike
from typing import Iterator, MutableMapping

from loguru import logger

from pipe import Pipe

from pyrsistent import PRecord, pvector_field

from returns.result import Success, Failure

from ensino.api.directory import Client
from ensino.etl.reconcile import \
    RowAbandoned, \
    RowError, \
    RowOutcome, \
    RowResult, \
    RowSkipped, \
    reconcile_row
from ensino.etl.rows import Row, read_rows

DEFAULT_CSV_PATH = 'Tabela_Final_com_Pesquisa.csv'

@Pipe
def reconciled(rows: Iterator[Row], client: Client) -> Iterator[RowResult]:
    # Strictly one row at a time: each row's lookups and creates finish before
    # the next row starts.
    for row in rows:
        yield reconcile_row(client, row)

class MigrationSummary(PRecord):
    linked = pvector_field(RowOutcome)
    already_linked = pvector_field(RowOutcome)
    skipped = pvector_field(RowSkipped)
    abandoned = pvector_field(RowAbandoned)
    errored = pvector_field(RowError)

    @property
    def total(self) -> int:
        return sum(
            len(results) for results in
            (self.linked, self.already_linked, self.skipped, self.abandoned, self.errored)
        )

    def counts(self) -> dict:
        return {
            'total': self.total,
            'linked': len(self.linked),
            'already_linked': len(self.already_linked),
            'skipped': len(self.skipped),
            'abandoned': len(self.abandoned),
            'errored': len(self.errored),
        }

class RowResultAssorter:
    @staticmethod
    def classify(accumulator: MutableMapping, result: RowResult) -> MutableMapping:
        match result:
            case Success(RowOutcome(linked=True) as outcome):
                accumulator['linked'].append(outcome)
            case Success(RowOutcome() as outcome):
                accumulator['already_linked'].append(outcome)
            case Failure(RowSkipped() as skipped):
                accumulator['skipped'].append(skipped)
            case Failure(RowAbandoned() as abandoned):
                accumulator['abandoned'].append(abandoned)
            case Failure(RowError() as errored):
                accumulator['errored'].append(errored)
        return accumulator

    @staticmethod
    def assort(results: Iterator[RowResult]) -> MigrationSummary:
        assorted = reduce(
            RowResultAssorter.classify,
            results,
            {'linked': [], 'already_linked': [], 'skipped': [], 'abandoned': [], 'errored': []}
        )
        return MigrationSummary(**assorted)

@logger.catch(reraise=True)
def run(client: Client, csv_path: str | PathLike = DEFAULT_CSV_PATH) -> MigrationSummary:
    with logger.contextualize(csv_path=str(csv_path)):
        # Read the whole file before touching the API:
        rows = read_rows(csv_path)
        logger.info(f'Read {len(rows)} rows from {csv_path}')

        summary = RowResultAssorter.assort(rows | reconciled(client))

        logger.info('Migration done: {total} rows, {linked} linked, {already_linked} already linked, '
            '{skipped} skipped, {abandoned} abandoned, {errored} errored', **summary.counts())
        return summary
