"""
Day-by-day import of Google Analytics reports into the archive.

Each invocation imports a limited number of days for one site and stores
progress in the import status, so scheduled runs (cron) pick up where the
previous one stopped.

Usage:
    python -m ga_importer.import_runner init-db
    python -m ga_importer.import_runner start --idsite 1 --property UA-1 --account 1 --view 123
    python -m ga_importer.import_runner run --idsite 1 --max-days 5
    python -m ga_importer.import_runner status
    python -m ga_importer.import_runner cancel --idsite 1
"""
import os
import sys
import json
import logging
import argparse
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import get_config, get_import_log_file
from .db import ArchiveWriter, Site, SiteRegistry, UnexpectedWebsiteFound, ensure_schema
from .ga_client import DailyRateLimitReached, create_query_service
from .import_status import ImportCancelled, ImportStatus, ImportStatusError, ImportStatusRecord, Status, parse_date
from .record_importer import ImporterContext, RecordImporter
from .referrers_importer import ReferrersRecordImporter
from .translations import translate
from .visitor_interest_importer import VisitorInterestRecordImporter

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

IMPORTER_CLASSES = [
    ReferrersRecordImporter,
    VisitorInterestRecordImporter,
]


class ImportRunner:
    """
    Runs the import for one site: asks every importer for the day's records,
    writes them through the archive writer and advances the import status.
    """

    def __init__(self, import_status: Optional[ImportStatus] = None, sites: Optional[SiteRegistry] = None,
                 query_service_factory: Callable = create_query_service,
                 archive_writer_factory: Callable = ArchiveWriter,
                 importer_classes: Optional[List[type]] = None,
                 today: Callable[[], date] = date.today,
                 config: Optional[Dict[str, Any]] = None):
        self.config = config or get_config()
        self.sites = sites if sites is not None else SiteRegistry()
        self.import_status = import_status if import_status is not None else ImportStatus(sites=self.sites)
        self.query_service_factory = query_service_factory
        self.archive_writer_factory = archive_writer_factory
        self.importer_classes = importer_classes if importer_classes is not None else IMPORTER_CLASSES
        self._today = today

    def make_importers(self, record: ImportStatusRecord) -> List[RecordImporter]:
        query_service = self.query_service_factory(record.ga_view, self.config)
        context = ImporterContext(query_service=query_service, id_site=record.id_site, config=self.config)
        return [importer_class(context) for importer_class in self.importer_classes]

    def get_import_window(self, record: ImportStatusRecord) -> Tuple[date, date]:
        """
        Days to import: the configured range, or from site creation until yesterday.
        """
        if record.import_range_start:
            start = parse_date(record.import_range_start)
        else:
            start = self.sites.get_creation_date(record.id_site)

        if record.import_range_end:
            end = parse_date(record.import_range_end)
        else:
            end = self._today() - timedelta(days=1)
        return start, end

    def get_next_day(self, record: ImportStatusRecord, start: date) -> date:
        if record.last_date_imported:
            return max(parse_date(record.last_date_imported) + timedelta(days=1), start)
        return start

    def run(self, id_site: int, max_days: Optional[int] = None) -> bool:
        """
        Import up to max_days days for a site.

        Returns:
            True if the import is finished, False if there is more to do
            (or it was cancelled / rate limited).
        """
        try:
            record = self.import_status.get_import_status(id_site)
        except ImportCancelled:
            logger.info(f"Import was cancelled for site {id_site}, nothing to do")
            return False

        if record.status == Status.FINISHED:
            logger.info(f"Import for site {id_site} is already finished")
            return True

        if record.status in (Status.RATE_LIMITED, Status.ERRORED):
            logger.info(f"Resuming {record.status} import for site {id_site}")
            record = self.import_status.resume_import(id_site)

        days_imported = 0
        try:
            start, end = self.get_import_window(record)
            day = self.get_next_day(record, start)
            logger.info(f"Importing site {id_site} from {day} to {end}")

            importers = self.make_importers(record) if day <= end else []
            while day <= end and (max_days is None or days_imported < max_days):
                self.import_day(id_site, importers, day)
                days_imported += 1
                day += timedelta(days=1)
        except DailyRateLimitReached as e:
            logger.warning(f"Rate limit reached for site {id_site} after {days_imported} days: {e}")
            self.import_status.rate_limit_reached(id_site)
            return False
        except ImportCancelled:
            logger.info(f"Import for site {id_site} was cancelled while running")
            return False
        except Exception as e:
            logger.error(f"Import for site {id_site} failed: {e}", exc_info=True)
            self.import_status.errored_import(id_site, str(e))
            raise

        if day > end:
            self.import_status.finished_import(id_site)
            logger.info(f"Import for site {id_site} finished")
            return True

        logger.info(f"Imported {days_imported} days for site {id_site}, next day is {day}")
        return False

    def import_day(self, id_site: int, importers: List[RecordImporter], day: date):
        logger.info(f"Importing {day} for site {id_site}")
        with self.archive_writer_factory(id_site, day) as writer:
            for importer in importers:
                numeric_records = {}
                for record_name, value in importer.import_records(day):
                    if isinstance(value, str):
                        writer.insert_blob_record(record_name, value)
                    else:
                        numeric_records[record_name] = value
                writer.insert_numeric_records(numeric_records)
                logger.debug(f"{importer.plugin_name} records imported for {day}")

        self.import_status.day_import_finished(id_site, day)
        self.import_status.import_archive_finished(id_site, day)


def configure_logging(config: Dict[str, Any], id_site: Optional[int] = None, verbose: bool = False):
    """
    Console logging plus, for a site, the per-site import log file.
    """
    handlers = [logging.StreamHandler()]
    if id_site is not None:
        os.makedirs(config['log_dir'], exist_ok=True)
        handlers.append(logging.FileHandler(get_import_log_file(id_site, config)))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def _json_default(value):
    if isinstance(value, Site):
        return value.to_dict()
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _date_arg(value: str) -> date:
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r}, expected YYYY-MM-DD")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Import Google Analytics reports into the archive')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('init-db', help='Create database tables')

    start = subparsers.add_parser('start', help='Start a new import for a site')
    start.add_argument('--idsite', type=int, required=True)
    start.add_argument('--property', required=True, help='GA property id')
    start.add_argument('--account', required=True, help='GA account id')
    start.add_argument('--view', required=True, help='GA view id')
    start.add_argument('--start-date', type=_date_arg)
    start.add_argument('--end-date', type=_date_arg)
    start.add_argument('--extra-dimensions', default=None, help='JSON list of extra custom dimensions')

    run = subparsers.add_parser('run', help='Import the next days for a site')
    run.add_argument('--idsite', type=int, required=True)
    run.add_argument('--max-days', type=int, default=None)

    subparsers.add_parser('status', help='Print all import statuses as JSON')

    cancel = subparsers.add_parser('cancel', help='Cancel an import and remove its status')
    cancel.add_argument('--idsite', type=int, required=True)

    verbose = subparsers.add_parser('verbose', help='Toggle verbose logging for a site')
    verbose.add_argument('--idsite', type=int, required=True)
    verbose.add_argument('state', choices=['on', 'off'])

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = get_config()
    import_status = ImportStatus()

    try:
        if args.command == 'init-db':
            configure_logging(config)
            ensure_schema()

        elif args.command == 'start':
            configure_logging(config, args.idsite)
            extra_dimensions = json.loads(args.extra_dimensions) if args.extra_dimensions else []
            # validated before the status is created
            if args.start_date and args.end_date and args.start_date > args.end_date:
                raise ValueError(translate('GoogleAnalyticsImporter_InvalidDateRange'))
            import_status.starting_import(args.property, args.account, args.view, args.idsite, extra_dimensions)
            if args.start_date or args.end_date:
                import_status.set_import_date_range(args.idsite, args.start_date, args.end_date)

        elif args.command == 'run':
            verbose = False
            try:
                verbose = import_status.get_import_status(args.idsite).is_verbose_logging_enabled
            except ImportCancelled:
                pass
            configure_logging(config, args.idsite, verbose)
            runner = ImportRunner(import_status=import_status, sites=import_status.sites, config=config)
            runner.run(args.idsite, args.max_days)

        elif args.command == 'status':
            configure_logging(config)
            print(json.dumps(import_status.get_all_import_statuses(), default=_json_default, indent=2))

        elif args.command == 'cancel':
            configure_logging(config)
            import_status.delete_status(args.idsite)
            logger.info(f"Import for site {args.idsite} cancelled")

        elif args.command == 'verbose':
            configure_logging(config)
            import_status.set_verbose_logging(args.idsite, args.state == 'on')

    except (ImportStatusError, UnexpectedWebsiteFound, ValueError) as e:
        logger.error(str(e))
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
