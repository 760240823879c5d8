"""
Двухуровневые таблицы агрегации в формате отчётов хоста.

Строка верхнего уровня (метка -> метрики) может иметь подтаблицу
второго уровня (вторичная метка -> метрики).
"""
import json
import numbers
from typing import Any, Dict, Iterator, List, Optional

# Метка строки, в которую сворачиваются строки, отброшенные при усечении
SUMMARY_ROW_LABEL = -1


class Row:
    """
    Строка таблицы: метка, значения метрик, метаданные и необязательная подтаблица.
    Строки ответа API несут значения измерений в метаданных.
    """

    def __init__(self, label: Any = None, columns: Optional[Dict[Any, Any]] = None,
                 metadata: Optional[Dict[str, Any]] = None):
        self.label = label
        self.columns = dict(columns or {})
        self.metadata = dict(metadata or {})
        self.subtable: Optional['DataTable'] = None

    def get_metadata(self, name: str, default: Any = None) -> Any:
        return self.metadata.get(name, default)

    def get_column(self, name: Any, default: Any = 0) -> Any:
        return self.columns.get(name, default)

    def sum_columns(self, columns: Dict[Any, Any]):
        for name, value in columns.items():
            if not isinstance(value, numbers.Number):
                continue
            self.columns[name] = self.columns.get(name, 0) + value

    def get_or_create_subtable(self) -> 'DataTable':
        if self.subtable is None:
            self.subtable = DataTable()
        return self.subtable

    def __repr__(self):
        return f"Row(label={self.label!r}, columns={self.columns!r})"


class DataTable:
    """
    Упорядоченный набор строк с индексом по метке.
    """

    def __init__(self, rows: Optional[List[Row]] = None):
        self._rows: List[Row] = []
        self._by_label: Dict[Any, Row] = {}
        for row in rows or []:
            self.add_row(row)

    def add_row(self, row: Row) -> Row:
        self._rows.append(row)
        if row.label not in self._by_label:
            self._by_label[row.label] = row
        return row

    def get_row_from_label(self, label: Any) -> Optional[Row]:
        return self._by_label.get(label)

    def get_rows(self) -> List[Row]:
        return list(self._rows)

    def get_row_count(self) -> int:
        return len(self._rows)

    def clear(self):
        """Освобождает строки и подтаблицы."""
        for row in self._rows:
            if row.subtable is not None:
                row.subtable.clear()
                row.subtable = None
        self._rows = []
        self._by_label = {}

    def __iter__(self) -> Iterator[Row]:
        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def to_list(self, max_rows: Optional[int] = None, max_rows_subtable: Optional[int] = None,
                column_to_sort_by: Any = None) -> List[Dict[str, Any]]:
        """
        Представление таблицы в виде списка словарей с усечением.

        Если строк больше max_rows, строки сортируются по column_to_sort_by
        (по убыванию), первые max_rows - 1 сохраняются, а остальные
        суммируются в строку SUMMARY_ROW_LABEL. Подтаблицы усекаются
        так же по max_rows_subtable.
        """
        rows = self._rows
        summary = None
        if max_rows and len(rows) > max_rows:
            rows = sorted(rows, key=lambda r: r.get_column(column_to_sort_by, 0), reverse=True)
            kept = max(max_rows - 1, 0)
            summary = Row(label=SUMMARY_ROW_LABEL)
            for row in rows[kept:]:
                summary.sum_columns(row.columns)
            rows = rows[:kept]

        result = []
        for row in rows:
            item = {'label': row.label, 'columns': dict(row.columns)}
            if row.subtable is not None:
                item['subtable'] = row.subtable.to_list(max_rows_subtable, max_rows_subtable,
                                                        column_to_sort_by)
            result.append(item)
        if summary is not None:
            result.append({'label': summary.label, 'columns': summary.columns})
        return result

    def get_serialized(self, max_rows: Optional[int] = None, max_rows_subtable: Optional[int] = None,
                       column_to_sort_by: Any = None) -> str:
        return json.dumps(self.to_list(max_rows, max_rows_subtable, column_to_sort_by))


def add_row_to_table(table: DataTable, row: Row, label: Any) -> Row:
    """
    Добавляет метрики строки в таблицу под меткой label.
    Если строка с такой меткой уже есть, метрики суммируются.

    Returns:
        Строка таблицы, в которую были добавлены метрики
    """
    existing = table.get_row_from_label(label)
    if existing is None:
        return table.add_row(Row(label=label, columns=row.columns))
    existing.sum_columns(row.columns)
    return existing


def add_row_to_subtable(top_level_row: Row, row: Row, label: Any) -> Row:
    return add_row_to_table(top_level_row.get_or_create_subtable(), row, label)
