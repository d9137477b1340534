"""Conditional logic for the dynamic ticket form fields.

A field's ``validation`` JSON may carry:

    dependsOn          slug of the controlling field, or ``profile.<key>``
    showWhenValue      show only when the controlling value matches
    hideWhenValue      hide when the controlling value matches
    requiredWhenValue  required only when the controlling value matches

alongside plain constraints (minLength, maxLength, pattern/regex, min, max,
errorMessage, multiSelect). Matching is case-insensitive and accepts a
single value or a list on either side.
"""
import re
from datetime import date

from .constants import MULTI_SELECT_TYPES

PROFILE_PREFIX = 'profile.'

# Contact and residence details the ticket form sends alongside the field answers
PROFILE_KEYS = frozenset([
    'name', 'email', 'phone', 'hostel', 'Hostel', 'hostel_name', 'roomNumber', 'room_number', 'room',
    'batchYear', 'batch_year', 'batch', 'classSection', 'class_section', 'section',
])


def _as_list(value):
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _text(value):
    return '' if value is None else str(value)


def matches_rule_value(value, rule_value):
    if rule_value is None:
        return False
    targets = [_text(t).lower() for t in _as_list(rule_value)]
    return any(_text(v).lower() in targets for v in _as_list(value))


def _rules(field):
    return getattr(field, 'validation', None) or {}


def _field_type(field):
    return (getattr(field, 'field_type', '') or '').lower()


def is_multi_select(field):
    return bool(_rules(field).get('multiSelect')) or _field_type(field) in MULTI_SELECT_TYPES


def dependency_value(key, answers, profile=None):
    if not key:
        return None
    if key.startswith(PROFILE_PREFIX):
        return (profile or {}).get(key[len(PROFILE_PREFIX):])
    return (answers or {}).get(key)


def should_display(field, answers, profile=None):
    rules = _rules(field)
    if not rules.get('dependsOn'):
        return True
    controlling = dependency_value(rules['dependsOn'], answers, profile)
    if 'showWhenValue' in rules:
        return matches_rule_value(controlling, rules['showWhenValue'])
    if 'hideWhenValue' in rules:
        return not matches_rule_value(controlling, rules['hideWhenValue'])
    return True


def is_required(field, answers, profile=None):
    rules = _rules(field)
    if rules.get('dependsOn') and 'requiredWhenValue' in rules:
        controlling = dependency_value(rules['dependsOn'], answers, profile)
        return matches_rule_value(controlling, rules['requiredWhenValue'])
    return bool(field.required)


def is_filled(field, value):
    if is_multi_select(field):
        items = [] if value is None else _as_list(value)
        return any(isinstance(v, str) and v.strip() for v in items)

    field_type = _field_type(field)
    if field_type == 'boolean':
        return value is True or value is False or value in ('true', 'false')
    if field_type == 'upload':
        if not value:
            return False
        return len(_as_list(value)) > 0
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ''
    return True


def _options_for(field):
    options = getattr(field, 'option_values', None)
    return options() if callable(options) else []


def check_value(field, value):
    """Type-level check of a filled value. Returns an error message or None."""
    rules = _rules(field)
    field_type = _field_type(field)
    custom = rules.get('errorMessage')

    if is_multi_select(field):
        if not isinstance(value, (list, tuple)):
            return f"{field.name} must be a list of values"
        allowed = _options_for(field)
        if allowed and any(v not in allowed for v in value):
            return custom or f"{field.name} contains an invalid option"
        return None

    if field_type in ('text', 'textarea'):
        text = _text(value)
        min_length = rules.get('minLength')
        max_length = rules.get('maxLength')
        pattern = rules.get('pattern') or rules.get('regex')
        if min_length is not None and len(text) < int(min_length):
            return custom or f"{field.name} must be at least {min_length} characters"
        if max_length is not None and len(text) > int(max_length):
            return custom or f"{field.name} must be at most {max_length} characters"
        if pattern:
            try:
                if not re.search(pattern, text):
                    return custom or f"{field.name} is not in the expected format"
            except re.error:
                return None
        return None

    if field_type == 'number':
        try:
            number = float(value)
        except (TypeError, ValueError):
            return f"{field.name} must be a number"
        if rules.get('min') is not None and number < float(rules['min']):
            return custom or f"{field.name} must be at least {rules['min']}"
        if rules.get('max') is not None and number > float(rules['max']):
            return custom or f"{field.name} must be at most {rules['max']}"
        return None

    if field_type == 'date':
        try:
            date.fromisoformat(_text(value)[:10])
        except ValueError:
            return f"{field.name} must be a valid date"
        return None

    if field_type == 'select':
        allowed = _options_for(field)
        if allowed and _text(value) not in allowed:
            return custom or f"{field.name} has an invalid option"
        return None

    return None


def validate_answers(fields, answers, profile=None):
    """Validate submitted metadata against the subcategory fields.

    Returns ``{slug: message}``; an empty dict means the answers are valid.
    Hidden fields are never required nor checked.
    """
    answers = answers or {}
    errors = {}
    for field in fields:
        if not should_display(field, answers, profile):
            continue
        value = answers.get(field.slug)
        if not is_filled(field, value):
            if is_required(field, answers, profile):
                errors[field.slug] = f"{field.name} is required"
            continue
        message = check_value(field, value)
        if message:
            errors[field.slug] = message
    return errors


def visible_fields(fields, answers, profile=None):
    return [f for f in fields if should_display(f, answers, profile)]


def form_progress(fields, answers, profile=None, base_items=0, base_filled=0):
    """Percentage of required visible items that are filled.

    ``base_items``/``base_filled`` account for fixed inputs such as the
    category and description that sit outside the dynamic fields.
    """
    total = base_items
    filled = base_filled
    for field in visible_fields(fields, answers, profile):
        if not is_required(field, answers, profile):
            continue
        total += 1
        if is_filled(field, (answers or {}).get(field.slug)):
            filled += 1
    if total == 0:
        return 100
    return round(filled * 100 / total)


def validate_logic_rules(field_slug, rules, sibling_slugs):
    """Admin-side sanity checks for a field's logic keys. Returns a list of messages."""
    problems = []
    rules = rules or {}
    depends_on = rules.get('dependsOn')
    if depends_on:
        if depends_on == field_slug:
            problems.append("A field cannot depend on itself")
        elif not depends_on.startswith(PROFILE_PREFIX) and depends_on not in sibling_slugs:
            problems.append(f"dependsOn refers to unknown field '{depends_on}'")
    elif 'requiredWhenValue' in rules:
        problems.append("requiredWhenValue needs dependsOn")
    return problems


def strip_profile_keys(answers, field_slugs=()):
    """Drop profile details from the answers, keeping any key that is also a field slug."""
    keep = set(field_slugs)
    return {k: v for k, v in (answers or {}).items() if k not in PROFILE_KEYS or k in keep}
