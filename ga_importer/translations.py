"""
Translation lookup used for user-facing strings.
"""
from typing import Any

TRANSLATIONS = {
    'General_Unknown': 'Unknown',
    'GoogleAnalyticsImporter_CancelExistingImportFirst':
        'An import is already in progress for site %s, cancel it before starting a new one.',
    'GoogleAnalyticsImporter_ImportCancelled': 'Import was cancelled.',
    'GoogleAnalyticsImporter_InvalidDateRange': 'The start date cannot be past the end date.',
    'GoogleAnalyticsImporter_NotProvided': '(not provided)',
}


def translate(key: str, *args: Any) -> str:
    """
    Look up a translation by key, formatting any positional arguments in.
    Unknown keys are returned as-is.
    """
    text = TRANSLATIONS.get(key, key)
    if args:
        text = text % args
    return text


def lcfirst(text: str) -> str:
    return text[:1].lower() + text[1:]
