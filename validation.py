import re

from flask import jsonify

from models import db
from utils import parse_date

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def validation_error(errors):
    return jsonify({'message': 'The given data was invalid.', 'errors': errors}), 422


class Validator:
    """Collects per-field error messages while reading a JSON payload.

    Each check returns the cleaned value (or None) and records it in
    ``cleaned`` so routes can assign straight from there.
    """

    def __init__(self, data):
        self.data = data if isinstance(data, dict) else {}
        self.errors = {}
        self.cleaned = {}

    @property
    def fails(self):
        return bool(self.errors)

    def add(self, field, message):
        self.errors.setdefault(field, []).append(message)

    def _missing(self, field, required):
        value = self.data.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            if required:
                self.add(field, f'The {field} field is required.')
            self.cleaned[field] = None
            return True
        return False

    def string(self, field, required=False, max_length=None, strip=True):
        if self._missing(field, required):
            return None
        value = self.data[field]
        if not isinstance(value, str):
            self.add(field, f'The {field} must be a string.')
            return None
        if strip:
            value = value.strip()
        if max_length is not None and len(value) > max_length:
            self.add(field, f'The {field} may not be greater than {max_length} characters.')
            return None
        self.cleaned[field] = value
        return value

    def integer(self, field, required=False, min_value=None, max_value=None):
        if self._missing(field, required):
            return None
        value = self.data[field]
        if isinstance(value, bool):
            value = None
        elif isinstance(value, str) and re.fullmatch(r'-?\d+', value.strip()):
            value = int(value)
        elif not isinstance(value, int):
            value = None
        if value is None:
            self.add(field, f'The {field} must be an integer.')
            return None
        if min_value is not None and value < min_value:
            self.add(field, f'The {field} must be at least {min_value}.')
            return None
        if max_value is not None and value > max_value:
            self.add(field, f'The {field} may not be greater than {max_value}.')
            return None
        self.cleaned[field] = value
        return value

    def email(self, field, required=False):
        value = self.string(field, required=required, max_length=120)
        if value is not None and not EMAIL_RE.match(value):
            self.add(field, f'The {field} must be a valid email address.')
            self.cleaned[field] = None
            return None
        return value

    def date(self, field, required=False):
        if self._missing(field, required):
            return None
        value = parse_date(self.data[field])
        if value is None:
            self.add(field, f'The {field} is not a valid date.')
            return None
        self.cleaned[field] = value
        return value

    def one_of(self, field, choices, required=False):
        value = self.string(field, required=required)
        if value is not None and value not in choices:
            self.add(field, f'The selected {field} is invalid.')
            self.cleaned[field] = None
            return None
        return value

    def exists(self, field, model, required=False):
        value = self.integer(field, required=required)
        if value is not None and db.session.get(model, value) is None:
            self.add(field, f'The selected {field} is invalid.')
            self.cleaned[field] = None
            return None
        return value

    def id_list(self, field, model):
        """Validate an optional list of primary keys and return the instances."""
        value = self.data.get(field)
        if value is None:
            self.cleaned[field] = None
            return None
        if not isinstance(value, list):
            self.add(field, f'The {field} must be an array.')
            return None
        instances = []
        for index, item in enumerate(value):
            instance = None
            if isinstance(item, int) and not isinstance(item, bool):
                instance = db.session.get(model, item)
            if instance is None:
                self.add(f'{field}.{index}', f'The selected {field}.{index} is invalid.')
            else:
                instances.append(instance)
        self.cleaned[field] = instances
        return instances
