"""
Тесты для запуска импорта по дням и CLI.
"""
import json
import unittest
from datetime import date, timedelta
from unittest.mock import MagicMock, patch

from ga_importer.config import default_config
from ga_importer.db import UnexpectedWebsiteFound
from ga_importer.ga_client import DailyRateLimitReached
from ga_importer.import_runner import ImportRunner, build_parser, main
from ga_importer.import_status import ImportCancelled, ImportStatus, ImportStatusRecord, Status

TODAY = date(2020, 1, 10)


class FakeArchiveWriter:
    written = []
    numerics_written = []

    def __init__(self, id_site, day):
        self.id_site = id_site
        self.day = day
        self.blobs = []
        self.numerics = {}

    def insert_blob_record(self, name, blob):
        self.blobs.append((name, blob))

    def insert_numeric_records(self, records):
        self.numerics.update(records)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            FakeArchiveWriter.written.append((self.id_site, self.day, self.blobs))
            FakeArchiveWriter.numerics_written.append((self.id_site, self.day, self.numerics))
        return False


class FakeImporter:
    plugin_name = 'Fake'
    fail_on = {}

    def __init__(self, context):
        self.context = context

    def import_records(self, day):
        if day in self.fail_on:
            raise self.fail_on[day]
        return [('Fake_record', f"blob-{day}")]


class MixedImporter(FakeImporter):

    def import_records(self, day):
        return [('Mixed_table', f"blob-{day}"), ('Mixed_distinctThings', 3), ('Mixed_ratio', 0.5)]


class FakeOptionStore:
    """Хранилище опций в памяти."""

    def __init__(self):
        self.options = {}

    def get(self, name):
        return self.options.get(name)

    def set(self, name, value):
        self.options[name] = value

    def add(self, name, value):
        if name in self.options:
            return False
        self.options[name] = value
        return True

    def compare_and_set(self, name, expected, value):
        if self.options.get(name) != expected:
            return False
        self.options[name] = value
        return True

    def delete(self, name):
        self.options.pop(name, None)

    def get_like(self, prefix):
        return {name: value for name, value in self.options.items() if name.startswith(prefix)}


def make_record(**kwargs):
    values = {
        'id_site': 1,
        'status': Status.ONGOING,
        'ga_view': '123',
        'import_range_start': '2020-01-01',
        'import_range_end': '2020-01-05',
    }
    values.update(kwargs)
    return ImportStatusRecord(**values)


class TestImportRunner(unittest.TestCase):

    def setUp(self):
        FakeArchiveWriter.written = []
        FakeArchiveWriter.numerics_written = []
        FakeImporter.fail_on = {}
        self.import_status = MagicMock()
        self.sites = MagicMock()
        self.sites.get_creation_date.return_value = date(2019, 12, 30)
        self.query_service_factory = MagicMock()
        self.config = default_config()
        self.runner = ImportRunner(
            import_status=self.import_status,
            sites=self.sites,
            query_service_factory=self.query_service_factory,
            archive_writer_factory=FakeArchiveWriter,
            importer_classes=[FakeImporter],
            today=lambda: TODAY,
            config=self.config,
        )

    def imported_days(self):
        return [call.args[1] for call in self.import_status.day_import_finished.call_args_list]

    def test_imports_next_days_up_to_limit(self):
        self.import_status.get_import_status.return_value = make_record(last_date_imported='2020-01-02')

        finished = self.runner.run(1, max_days=2)

        self.assertFalse(finished)
        self.assertEqual(self.imported_days(), [date(2020, 1, 3), date(2020, 1, 4)])
        self.assertEqual(FakeArchiveWriter.written, [
            (1, date(2020, 1, 3), [('Fake_record', 'blob-2020-01-03')]),
            (1, date(2020, 1, 4), [('Fake_record', 'blob-2020-01-04')]),
        ])
        self.import_status.import_archive_finished.assert_called_with(1, date(2020, 1, 4))
        self.import_status.finished_import.assert_not_called()
        self.query_service_factory.assert_called_once_with('123', self.config)

    def test_finishes_after_last_day(self):
        self.import_status.get_import_status.return_value = make_record(last_date_imported='2020-01-03')

        finished = self.runner.run(1)

        self.assertTrue(finished)
        self.assertEqual(self.imported_days(), [date(2020, 1, 4), date(2020, 1, 5)])
        self.import_status.finished_import.assert_called_once_with(1)

    def test_nothing_left_to_import(self):
        self.import_status.get_import_status.return_value = make_record(last_date_imported='2020-01-05')

        self.assertTrue(self.runner.run(1, max_days=3))
        self.assertEqual(self.imported_days(), [])
        self.import_status.finished_import.assert_called_once_with(1)

    def test_open_range_uses_site_creation_and_yesterday(self):
        record = make_record(import_range_start='', import_range_end='')

        start, end = self.runner.get_import_window(record)

        self.assertEqual(start, date(2019, 12, 30))
        self.assertEqual(end, TODAY - timedelta(days=1))

    def test_next_day_is_not_before_range_start(self):
        record = make_record(last_date_imported='2019-06-01')
        self.assertEqual(self.runner.get_next_day(record, date(2020, 1, 1)), date(2020, 1, 1))

    def test_finished_import_is_not_rerun(self):
        self.import_status.get_import_status.return_value = make_record(status=Status.FINISHED)

        self.assertTrue(self.runner.run(1))
        self.query_service_factory.assert_not_called()

    def test_cancelled_import(self):
        self.import_status.get_import_status.side_effect = ImportCancelled('Import was cancelled.')

        self.assertFalse(self.runner.run(1))
        self.query_service_factory.assert_not_called()

    def test_rate_limited_import_is_resumed(self):
        self.import_status.get_import_status.return_value = make_record(status=Status.RATE_LIMITED)
        self.import_status.resume_import.return_value = make_record(last_date_imported='2020-01-04')

        self.assertTrue(self.runner.run(1))
        self.import_status.resume_import.assert_called_once_with(1)
        self.assertEqual(self.imported_days(), [date(2020, 1, 5)])

    def test_rate_limit_stops_the_run(self):
        self.import_status.get_import_status.return_value = make_record()
        FakeImporter.fail_on = {date(2020, 1, 2): DailyRateLimitReached('quota')}

        self.assertFalse(self.runner.run(1))

        self.assertEqual(self.imported_days(), [date(2020, 1, 1)])
        self.assertEqual([written[1] for written in FakeArchiveWriter.written], [date(2020, 1, 1)])
        self.import_status.rate_limit_reached.assert_called_once_with(1)
        self.import_status.errored_import.assert_not_called()

    def test_error_marks_import_errored(self):
        self.import_status.get_import_status.return_value = make_record()
        FakeImporter.fail_on = {date(2020, 1, 1): RuntimeError('boom')}

        with self.assertRaises(RuntimeError):
            self.runner.run(1)

        self.import_status.errored_import.assert_called_once_with(1, 'boom')
        self.assertEqual(FakeArchiveWriter.written, [])

    def test_cancelled_while_running(self):
        self.import_status.get_import_status.return_value = make_record()
        self.import_status.day_import_finished.side_effect = ImportCancelled('Import was cancelled.')

        self.assertFalse(self.runner.run(1))
        self.import_status.errored_import.assert_not_called()

    def test_numeric_records_are_written_apart_from_blobs(self):
        self.runner.importer_classes = [MixedImporter]
        self.import_status.get_import_status.return_value = make_record(last_date_imported='2020-01-04')

        self.assertTrue(self.runner.run(1))

        self.assertEqual(FakeArchiveWriter.written, [(1, date(2020, 1, 5), [('Mixed_table', 'blob-2020-01-05')])])
        self.assertEqual(FakeArchiveWriter.numerics_written, [
            (1, date(2020, 1, 5), {'Mixed_distinctThings': 3, 'Mixed_ratio': 0.5}),
        ])

    def test_query_service_is_not_created_when_nothing_is_left(self):
        self.import_status.get_import_status.return_value = make_record(last_date_imported='2020-01-05')
        self.query_service_factory.side_effect = EnvironmentError('no credentials')

        self.assertTrue(self.runner.run(1))

        self.query_service_factory.assert_not_called()
        self.import_status.finished_import.assert_called_once_with(1)
        self.import_status.errored_import.assert_not_called()


class TestCommandLine(unittest.TestCase):

    def setUp(self):
        patchers = [
            patch('ga_importer.import_runner.get_config', return_value=default_config()),
            patch('ga_importer.import_runner.configure_logging'),
            patch('ga_importer.import_runner.ImportStatus'),
        ]
        mocks = [patcher.start() for patcher in patchers]
        for patcher in patchers:
            self.addCleanup(patcher.stop)
        self.mock_import_status = mocks[2]
        self.import_status = mocks[2].return_value

    def test_parser_requires_command(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args([])

    def test_start(self):
        code = main(['start', '--idsite', '2', '--property', 'UA-2', '--account', '20', '--view', '200',
                     '--start-date', '2020-01-01', '--extra-dimensions', '["ga:dimension1"]'])

        self.assertEqual(code, 0)
        self.import_status.starting_import.assert_called_once_with('UA-2', '20', '200', 2, ['ga:dimension1'])
        self.import_status.set_import_date_range.assert_called_once_with(2, date(2020, 1, 1), None)

    def test_start_with_invalid_range(self):
        store = FakeOptionStore()
        self.mock_import_status.return_value = ImportStatus(store=store, sites=MagicMock(), clock=lambda: 1577836800)
        args = ['start', '--idsite', '2', '--property', 'UA-2', '--account', '20', '--view', '200']

        code = main(args + ['--start-date', '2020-02-01', '--end-date', '2020-01-01'])

        self.assertEqual(code, 1)
        self.assertNotIn('GoogleAnalyticsImporter.importStatus_2', store.options)

        self.assertEqual(main(args + ['--start-date', '2020-01-01', '--end-date', '2020-02-01']), 0)
        stored = json.loads(store.get('GoogleAnalyticsImporter.importStatus_2'))
        self.assertEqual((stored['import_range_start'], stored['import_range_end']), ('2020-01-01', '2020-02-01'))

    def test_start_for_unknown_site(self):
        self.import_status.starting_import.side_effect = UnexpectedWebsiteFound('unknown site 9')

        code = main(['start', '--idsite', '9', '--property', 'UA-9', '--account', '90', '--view', '900'])

        self.assertEqual(code, 1)

    def test_invalid_date_argument(self):
        with self.assertRaises(SystemExit):
            main(['start', '--idsite', '2', '--property', 'UA-2', '--account', '20', '--view', '200',
                  '--start-date', '01/02/2020'])

    @patch('ga_importer.import_runner.ImportRunner')
    def test_run(self, mock_runner):
        self.import_status.get_import_status.return_value = make_record(is_verbose_logging_enabled=True)

        self.assertEqual(main(['run', '--idsite', '1', '--max-days', '3']), 0)

        mock_runner.return_value.run.assert_called_once_with(1, 3)

    @patch('builtins.print')
    def test_status_prints_json(self, mock_print):
        self.import_status.get_all_import_statuses.return_value = [{'idSite': 1, 'status': 'ongoing'}]

        self.assertEqual(main(['status']), 0)

        printed = json.loads(mock_print.call_args.args[0])
        self.assertEqual(printed, [{'idSite': 1, 'status': 'ongoing'}])

    def test_cancel(self):
        self.assertEqual(main(['cancel', '--idsite', '4']), 0)
        self.import_status.delete_status.assert_called_once_with(4)

    def test_verbose(self):
        self.assertEqual(main(['verbose', '--idsite', '4', 'on']), 0)
        self.import_status.set_verbose_logging.assert_called_once_with(4, True)


if __name__ == '__main__':
    unittest.main()
