"""
Тесты для клиента Google Analytics Reporting API.
"""
import json
import unittest
from datetime import date
from unittest.mock import MagicMock, patch

from googleapiclient.errors import HttpError

from ga_importer.config import default_config
from ga_importer.ga_client import (
    DailyRateLimitReached,
    GoogleAnalyticsQueryService,
    get_error_reason,
    init_ga_service,
    parse_metric_value,
)
from ga_importer.metrics import (
    INDEX_NB_CONVERSIONS,
    INDEX_NB_VISITS,
    INDEX_NB_VISITS_CONVERTED,
    INDEX_PAGE_SUM_TIME_GENERATION,
)

DAY = date(2020, 2, 3)


def make_http_error(status, reason=None):
    resp = MagicMock()
    resp.status = status
    resp.reason = 'error'
    payload = {'error': {'code': status, 'message': 'error'}}
    if reason:
        payload['error']['errors'] = [{'reason': reason}]
    return HttpError(resp, json.dumps(payload).encode('utf-8'))


def make_report(rows, next_page_token=None):
    report = {
        'columnHeader': {
            'dimensions': ['ga:source'],
            'metricHeader': {'metricHeaderEntries': [
                {'name': 'ga:sessions', 'type': 'INTEGER'},
                {'name': 'ga:goalCompletionsAll', 'type': 'INTEGER'},
            ]},
        },
        'data': {'rows': [
            {'dimensions': [source], 'metrics': [{'values': values}]} for source, values in rows
        ]},
    }
    if next_page_token:
        report['nextPageToken'] = next_page_token
    return {'reports': [report]}


class TestGoogleAnalyticsQueryService(unittest.TestCase):

    def setUp(self):
        self.service = MagicMock()
        self.batch_get = self.service.reports.return_value.batchGet
        self.sleep = MagicMock()
        self.query_service = GoogleAnalyticsQueryService(self.service, '98765', default_config(), sleep=self.sleep)

    def test_query_maps_rows(self):
        self.batch_get.return_value.execute.return_value = make_report([
            ('google', ['10', '2']),
            ('bing', ['3', '0']),
        ])

        table = self.query_service.query(DAY, ['ga:source'], [INDEX_NB_VISITS, INDEX_NB_VISITS_CONVERTED,
                                                             INDEX_NB_CONVERSIONS])

        rows = table.get_rows()
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0].get_metadata('ga:source'), 'google')
        self.assertEqual(rows[0].columns, {INDEX_NB_VISITS: 10, INDEX_NB_VISITS_CONVERTED: 2,
                                           INDEX_NB_CONVERSIONS: 2})

        body = self.batch_get.call_args.kwargs['body']
        request = body['reportRequests'][0]
        self.assertEqual(request['viewId'], '98765')
        self.assertEqual(request['metrics'], [{'expression': 'ga:sessions'},
                                              {'expression': 'ga:goalCompletionsAll'}])
        self.assertEqual(request['orderBys'], [
            {'fieldName': 'ga:sessions', 'orderType': 'VALUE', 'sortOrder': 'DESCENDING'},
        ])
        self.assertEqual(request['pageSize'], 10000)

    def test_query_follows_pages(self):
        self.batch_get.return_value.execute.side_effect = [
            make_report([('google', ['1', '0'])], next_page_token='1'),
            make_report([('bing', ['2', '0'])]),
        ]

        table = self.query_service.query(DAY, ['ga:source'], [INDEX_NB_VISITS])

        self.assertEqual([row.get_metadata('ga:source') for row in table], ['google', 'bing'])
        tokens = [call.kwargs['body']['reportRequests'][0].get('pageToken')
                  for call in self.batch_get.call_args_list]
        self.assertEqual(tokens, [None, '1'])

    def test_empty_report(self):
        self.batch_get.return_value.execute.return_value = {'reports': [{'columnHeader': {}, 'data': {}}]}
        table = self.query_service.query(DAY, ['ga:source'], [INDEX_NB_VISITS])
        self.assertEqual(table.get_row_count(), 0)

    def test_order_by_warning_is_logged(self):
        self.batch_get.return_value.execute.return_value = make_report([])
        with self.assertLogs('ga_importer.ga_client', level='ERROR') as logs:
            self.query_service.query(DAY, ['ga:source'], [INDEX_NB_VISITS],
                                     {'orderBys': [{'field': 'ga:pageviews', 'order': 'desc'}]})
        self.assertTrue(any('ga:pageviews' in line for line in logs.output))

    def test_retries_on_rate_limit(self):
        self.batch_get.return_value.execute.side_effect = [
            make_http_error(403, 'userRateLimitExceeded'),
            make_http_error(503),
            make_report([('google', ['1', '0'])]),
        ]

        table = self.query_service.query(DAY, ['ga:source'], [INDEX_NB_VISITS])

        self.assertEqual(table.get_row_count(), 1)
        self.assertEqual([call.args[0] for call in self.sleep.call_args_list], [1, 2])

    def test_rate_limit_retries_exhausted(self):
        self.batch_get.return_value.execute.side_effect = make_http_error(429)

        with self.assertRaises(DailyRateLimitReached):
            self.query_service.query(DAY, ['ga:source'], [INDEX_NB_VISITS])
        self.assertEqual(self.sleep.call_count, 3)

    def test_server_errors_exhausted_are_reraised(self):
        self.batch_get.return_value.execute.side_effect = make_http_error(500)

        with self.assertRaises(HttpError):
            self.query_service.query(DAY, ['ga:source'], [INDEX_NB_VISITS])
        self.assertEqual(self.sleep.call_count, 3)

    def test_daily_limit_is_not_retried(self):
        self.batch_get.return_value.execute.side_effect = make_http_error(403, 'dailyLimitExceeded')

        with self.assertRaises(DailyRateLimitReached):
            self.query_service.query(DAY, ['ga:source'], [INDEX_NB_VISITS])
        self.sleep.assert_not_called()

    def test_client_error_is_raised(self):
        self.batch_get.return_value.execute.side_effect = make_http_error(400, 'badRequest')

        with self.assertRaises(HttpError):
            self.query_service.query(DAY, ['ga:source'], [INDEX_NB_VISITS])
        self.sleep.assert_not_called()


class TestHelpers(unittest.TestCase):

    def test_get_error_reason(self):
        self.assertEqual(get_error_reason(make_http_error(403, 'quotaExceeded')), 'quotaExceeded')
        self.assertIsNone(get_error_reason(make_http_error(500)))

    def test_parse_metric_value(self):
        self.assertEqual(parse_metric_value('12', 'INTEGER', INDEX_NB_VISITS), 12)
        self.assertEqual(parse_metric_value('1.5', 'CURRENCY', INDEX_NB_VISITS), 1.5)
        self.assertEqual(parse_metric_value('2500', 'INTEGER', INDEX_PAGE_SUM_TIME_GENERATION), 2.5)
        self.assertEqual(parse_metric_value('n/a', 'INTEGER', INDEX_NB_VISITS), 0)

    def test_init_ga_service_requires_key_file(self):
        with self.assertRaises(EnvironmentError):
            init_ga_service('/nonexistent/key.json')

    @patch('ga_importer.ga_client.build')
    @patch('ga_importer.ga_client.service_account.Credentials.from_service_account_file')
    @patch('ga_importer.ga_client.os.path.isfile', return_value=True)
    def test_init_ga_service(self, mock_isfile, mock_credentials, mock_build):
        service = init_ga_service('/keys/ga.json')

        mock_credentials.assert_called_once_with(
            '/keys/ga.json', scopes=['https://www.googleapis.com/auth/analytics.readonly'])
        mock_build.assert_called_once_with('analyticsreporting', 'v4',
                                           credentials=mock_credentials.return_value, cache_discovery=False)
        self.assertIs(service, mock_build.return_value)


if __name__ == '__main__':
    unittest.main()
