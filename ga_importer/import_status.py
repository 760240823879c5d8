"""
Статус импорта для каждого сайта.

Статус хранится одним JSON-документом в хранилище опций (по ключу на сайт),
плюс отдельная опция с диапазоном уже импортированных дат ("start,end").
Все изменения выполняются через compare-and-set, чтобы два одновременных
запуска для одного сайта не затирали изменения друг друга.
"""
import os
import json
import math
import time
import logging
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from .config import get_import_log_file
from .db import OptionStore, SiteRegistry, UnexpectedWebsiteFound
from .translations import lcfirst, translate

logger = logging.getLogger(__name__)

OPTION_NAME_PREFIX = 'GoogleAnalyticsImporter.importStatus_'
IMPORTED_DATE_RANGE_PREFIX = 'GoogleAnalyticsImporter.importedDateRange_'

STATUS_VERSION = 1
CAS_ATTEMPTS = 3
SECONDS_PER_DAY = 86400

TIMESTAMP_FIELDS = ('import_start_time', 'import_end_time', 'last_job_start_time')

# Поля, которые добавляет get_all_import_statuses и которые не сохраняются
DERIVED_FIELDS = (
    'site',
    'gaInfoPretty',
    'estimated_days_left_to_finish',
) + tuple(f"{name}_formatted" for name in TIMESTAMP_FIELDS)


class ImportStatusError(Exception):
    """Базовая ошибка статуса импорта."""


class ImportAlreadyRunning(ImportStatusError):
    """Для сайта уже есть незавершённый импорт."""


class ImportCancelled(ImportStatusError):
    """Статуса нет: импорт был отменён (или никогда не запускался)."""


class ImportStatusConflict(ImportStatusError):
    """Статус изменён другим процессом, и повторные попытки не помогли."""


class Status:
    """Константы состояний импорта."""

    STARTED = 'started'
    ONGOING = 'ongoing'
    FINISHED = 'finished'
    ERRORED = 'errored'
    RATE_LIMITED = 'rate_limited'


def parse_date(value: Union[str, date]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value, '%Y-%m-%d').date()


def format_timestamp(value: Any) -> Any:
    """Unix-время -> 'YYYY-MM-DD HH:MM:SS' (UTC); нераспознанные значения возвращаются как есть."""
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc).strftime('%Y-%m-%d %H:%M:%S')
    except (TypeError, ValueError, OverflowError, OSError):
        return value


@dataclass
class ImportStatusRecord:
    """
    Сохраняемый статус импорта одного сайта.

    Документы без поля version (старый формат) мигрируются при чтении,
    неизвестные ключи сохраняются в `extra` и записываются обратно как есть.
    """
    id_site: int
    status: str = Status.STARTED
    ga_property: Optional[str] = None
    ga_account: Optional[str] = None
    ga_view: Optional[str] = None
    last_date_imported: Optional[str] = None
    import_start_time: Optional[int] = None
    import_end_time: Optional[int] = None
    last_job_start_time: Optional[int] = None
    last_day_archived: Optional[str] = None
    import_range_start: Optional[str] = None
    import_range_end: Optional[str] = None
    extra_custom_dimensions: List[Any] = field(default_factory=list)
    days_finished_since_rate_limit: Optional[int] = 0
    is_verbose_logging_enabled: bool = False
    error: Optional[str] = None
    version: int = STATUS_VERSION
    extra: Dict[str, Any] = field(default_factory=dict)

    # документ -> атрибут, для полей с другим именем в документе
    _RENAMED = {'idSite': 'id_site'}

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            'version': self.version,
            'status': self.status,
            'idSite': self.id_site,
            'ga': {
                'property': self.ga_property,
                'account': self.ga_account,
                'view': self.ga_view,
            },
            'last_date_imported': self.last_date_imported,
            'import_start_time': self.import_start_time,
            'import_end_time': self.import_end_time,
            'last_job_start_time': self.last_job_start_time,
            'last_day_archived': self.last_day_archived,
            'import_range_start': self.import_range_start,
            'import_range_end': self.import_range_end,
            'extra_custom_dimensions': self.extra_custom_dimensions,
            'days_finished_since_rate_limit': self.days_finished_since_rate_limit,
            'is_verbose_logging_enabled': self.is_verbose_logging_enabled,
            'error': self.error,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ImportStatusRecord':
        data = migrate_status_document(data)
        ga_info = data.get('ga') or {}

        known = {f.name for f in fields(cls)} - {'extra', 'ga_property', 'ga_account', 'ga_view'}
        kwargs = {}
        extra = {}
        for key, value in data.items():
            attribute = cls._RENAMED.get(key, key)
            if key == 'ga':
                continue
            if attribute in known:
                kwargs[attribute] = value
            else:
                extra[key] = value

        return cls(
            ga_property=ga_info.get('property'),
            ga_account=ga_info.get('account'),
            ga_view=ga_info.get('view'),
            extra=extra,
            **kwargs,
        )


def migrate_status_document(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Приводит сохранённый документ к текущей версии формата.

    Версия 0 (без поля version): не было счётчика дней после rate limit
    (отсутствует -> None, т.е. не считается), флага подробного логирования,
    ошибки и дополнительных измерений.
    """
    data = dict(data)
    version = data.get('version', 0)
    if version > STATUS_VERSION:
        raise ImportStatusError(f"Unsupported import status version {version}")

    if version < 1:
        data.setdefault('days_finished_since_rate_limit', None)
        data.setdefault('is_verbose_logging_enabled', False)
        data.setdefault('error', None)
        if data.get('extra_custom_dimensions') is None:
            data['extra_custom_dimensions'] = []
        data['version'] = 1

    return data


class ImportStatus:
    """
    Конечный автомат статуса импорта:
    started -> ongoing -> finished, плюс errored и rate_limited.
    """

    def __init__(self, store: Optional[OptionStore] = None, sites: Optional[SiteRegistry] = None,
                 clock: Callable[[], float] = time.time, log_file_resolver: Callable[[int], str] = None):
        self.store = store if store is not None else OptionStore()
        self.sites = sites if sites is not None else SiteRegistry()
        self._clock = clock
        self._log_file_resolver = log_file_resolver or get_import_log_file

    def _now(self) -> int:
        return int(self._clock())

    @staticmethod
    def get_option_name(id_site: int) -> str:
        return f"{OPTION_NAME_PREFIX}{id_site}"

    @staticmethod
    def get_imported_date_range_option_name(id_site: int) -> str:
        return f"{IMPORTED_DATE_RANGE_PREFIX}{id_site}"

    @staticmethod
    def _encode(record: ImportStatusRecord) -> str:
        return json.dumps(record.to_dict())

    @staticmethod
    def _decode(raw: str) -> ImportStatusRecord:
        return ImportStatusRecord.from_dict(json.loads(raw))

    def starting_import(self, property_id: str, account_id: str, view_id: str, id_site: int,
                        extra_custom_dimensions: Optional[List[Any]] = None) -> ImportStatusRecord:
        """
        Создаёт новый статус в состоянии started.

        Raises:
            UnexpectedWebsiteFound: если сайта нет
            ImportAlreadyRunning: если для сайта есть незавершённый импорт
        """
        if not self.sites.exists(id_site):
            raise UnexpectedWebsiteFound(f"Cannot start an import for unknown site {id_site}")

        option_name = self.get_option_name(id_site)
        existing_raw = self.store.get(option_name)

        now = self._now()
        record = ImportStatusRecord(
            id_site=id_site,
            status=Status.STARTED,
            ga_property=property_id,
            ga_account=account_id,
            ga_view=view_id,
            import_start_time=now,
            last_job_start_time=now,
            extra_custom_dimensions=list(extra_custom_dimensions or []),
            days_finished_since_rate_limit=0,
        )
        new_raw = self._encode(record)

        if existing_raw:
            existing = self._decode(existing_raw)
            if existing.status != Status.FINISHED:
                raise ImportAlreadyRunning(translate('GoogleAnalyticsImporter_CancelExistingImportFirst', id_site))
            saved = self.store.compare_and_set(option_name, existing_raw, new_raw)
        else:
            saved = self.store.add(option_name, new_raw)

        if not saved:
            raise ImportStatusConflict(f"Import status for site {id_site} changed while starting the import")

        logger.info(f"Started import for site {id_site} (property {property_id}, view {view_id})")
        return record

    def get_import_status(self, id_site: int) -> ImportStatusRecord:
        """
        Raises:
            ImportCancelled: если статуса нет
        """
        raw = self.store.get(self.get_option_name(id_site))
        if not raw:
            raise ImportCancelled(translate('GoogleAnalyticsImporter_ImportCancelled'))
        return self._decode(raw)

    def _update(self, id_site: int, mutate: Callable[[ImportStatusRecord], None]) -> ImportStatusRecord:
        option_name = self.get_option_name(id_site)
        for attempt in range(1, CAS_ATTEMPTS + 1):
            raw = self.store.get(option_name)
            if not raw:
                raise ImportCancelled(translate('GoogleAnalyticsImporter_ImportCancelled'))

            record = self._decode(raw)
            mutate(record)
            if self.store.compare_and_set(option_name, raw, self._encode(record)):
                return record

            logger.warning(f"Import status for site {id_site} was modified concurrently "
                           f"(attempt {attempt}/{CAS_ATTEMPTS})")

        raise ImportStatusConflict(f"Could not update import status for site {id_site}")

    def day_import_finished(self, id_site: int, day: date) -> ImportStatusRecord:
        """
        Отмечает день как импортированный. last_date_imported только растёт.
        """
        advanced = []

        def mutate(record: ImportStatusRecord):
            advanced.clear()
            record.status = Status.ONGOING
            if not record.last_date_imported or not parse_date(record.last_date_imported) > day:
                record.last_date_imported = day.strftime('%Y-%m-%d')
                advanced.append(True)

            counter = record.days_finished_since_rate_limit
            if isinstance(counter, int) and not isinstance(counter, bool):
                record.days_finished_since_rate_limit = counter + 1

        record = self._update(id_site, mutate)
        if advanced:
            self._set_imported_date_range(id_site, end_date=day.strftime('%Y-%m-%d'))
        return record

    def set_import_date_range(self, id_site: int, start_date: Optional[date] = None,
                              end_date: Optional[date] = None) -> ImportStatusRecord:
        """
        Задаёт диапазон импорта; пустая граница означает открытый диапазон.

        Raises:
            ValueError: если начало позже конца
        """
        if start_date and end_date and start_date > end_date:
            raise ValueError(translate('GoogleAnalyticsImporter_InvalidDateRange'))

        start_str = start_date.strftime('%Y-%m-%d') if start_date else ''
        end_str = end_date.strftime('%Y-%m-%d') if end_date else ''

        def mutate(record: ImportStatusRecord):
            record.import_range_start = start_str
            record.import_range_end = end_str

        record = self._update(id_site, mutate)
        self._set_imported_date_range(id_site, start_date=start_str)
        return record

    def set_verbose_logging(self, id_site: int, is_enabled: bool) -> ImportStatusRecord:
        def mutate(record: ImportStatusRecord):
            record.is_verbose_logging_enabled = bool(is_enabled)
        return self._update(id_site, mutate)

    def resume_import(self, id_site: int) -> ImportStatusRecord:
        now = self._now()

        def mutate(record: ImportStatusRecord):
            record.status = Status.ONGOING
            record.last_job_start_time = now
            record.days_finished_since_rate_limit = 0
        return self._update(id_site, mutate)

    def import_archive_finished(self, id_site: int, day: date) -> ImportStatusRecord:
        def mutate(record: ImportStatusRecord):
            record.last_day_archived = day.strftime('%Y-%m-%d')
        return self._update(id_site, mutate)

    def finished_import(self, id_site: int) -> ImportStatusRecord:
        now = self._now()

        def mutate(record: ImportStatusRecord):
            record.status = Status.FINISHED
            record.import_end_time = now
        return self._update(id_site, mutate)

    def errored_import(self, id_site: int, error_message: str) -> ImportStatusRecord:
        def mutate(record: ImportStatusRecord):
            record.status = Status.ERRORED
            record.error = error_message
        return self._update(id_site, mutate)

    def rate_limit_reached(self, id_site: int) -> ImportStatusRecord:
        def mutate(record: ImportStatusRecord):
            record.status = Status.RATE_LIMITED
        return self._update(id_site, mutate)

    def get_all_import_statuses(self) -> List[Dict[str, Any]]:
        """
        Все статусы с вычисляемыми полями для отображения (DERIVED_FIELDS).
        """
        result = []
        for option_name, raw in self.store.get_like(OPTION_NAME_PREFIX).items():
            try:
                record = self._decode(raw)
            except (ValueError, TypeError, ImportStatusError) as e:
                logger.warning(f"Skipping unreadable import status {option_name}: {e}")
                continue
            result.append(self.enrich_status(record))
        return result

    def delete_status(self, id_site: int):
        """
        Удаляет статус (отмена импорта) и, по возможности, лог-файл импорта.
        """
        self.store.delete(self.get_option_name(id_site))

        log_file = self._log_file_resolver(id_site)
        try:
            os.remove(log_file)
        except OSError as e:
            logger.debug(f"Could not remove import log {log_file}: {e}")

    def get_imported_date_range(self, id_site: int) -> List[str]:
        raw = self.store.get(self.get_imported_date_range_option_name(id_site))
        dates = ['', '']
        if raw:
            parts = raw.split(',')
            dates[0] = parts[0]
            if len(parts) > 1:
                dates[1] = parts[1]
        return dates

    def _set_imported_date_range(self, id_site: int, start_date: Optional[str] = None,
                                 end_date: Optional[str] = None):
        dates = self.get_imported_date_range(id_site)
        if start_date is not None:
            dates[0] = start_date
        if end_date:
            dates[1] = end_date
        self.store.set(self.get_imported_date_range_option_name(id_site), ','.join(dates))

    def enrich_status(self, record: ImportStatusRecord) -> Dict[str, Any]:
        status = record.to_dict()

        try:
            status['site'] = self.sites.get(record.id_site)
        except UnexpectedWebsiteFound:
            status['site'] = None

        for name in TIMESTAMP_FIELDS:
            status[f"{name}_formatted"] = format_timestamp(status.get(name))

        status['gaInfoPretty'] = (f"Property: {record.ga_property}\nAccount: {record.ga_account}"
                                  f"\nView: {record.ga_view}")
        status['estimated_days_left_to_finish'] = self.get_estimated_days_left_to_finish(record)
        return status

    def get_estimated_days_left_to_finish(self, record: ImportStatusRecord) -> Union[int, str]:
        """
        Оценка оставшихся дней по скорости импорта (импортированные дни / дни работы).

        Returns:
            Число дней, либо "unknown", если оценить нельзя
        """
        unknown = lcfirst(translate('General_Unknown'))
        try:
            if not record.last_date_imported or not record.import_range_end:
                return unknown

            last_date_imported = parse_date(record.last_date_imported)
            import_end_date = parse_date(record.import_range_end)

            if record.import_range_start:
                import_range_start = parse_date(record.import_range_start)
            else:
                import_range_start = self.sites.get_creation_date(record.id_site)

            days_running = math.floor((self._now() - int(record.import_start_time)) / SECONDS_PER_DAY)
            if days_running == 0:
                return unknown

            total_days_left = (import_end_date - last_date_imported).days
            total_days_imported = (last_date_imported - import_range_start).days

            rate_of_import = total_days_imported / days_running
            if rate_of_import <= 0:
                return unknown

            return max(0, math.ceil(total_days_left / rate_of_import))
        except Exception as e:
            logger.debug(f"Could not estimate time left for site {record.id_site}: {e}")
            return unknown
