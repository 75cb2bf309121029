"""
NTA Data Analysis - Column Labeler

Derives grouping keys for each raw file from its filename.

The filename layout of a run is declared once in a FilenameSchema:
which token position holds which experimental role (replicate, density,
seed status, timepoint, ...), how many tokens a filename must have, and
optionally groups of interleaved tokens that together form one label.
Every filename is validated against the schema before any grouping.
"""

import json
import os
import re

from nta_errors import FilenameFormatMismatchError


class FilenameSchema:
    """
    Declarative filename layout for one experimental run.

    Parameters:
    arity (int): Number of tokens every filename must split into
    fields (dict): role -> 0-based token position
    interleaved (dict): role -> (start, stop, step) token slice; the selected
        tokens are re-joined with the separator into one value
    patterns (dict): role -> regular expression the value must fully match
    separator (str): Token separator
    suffix (str): Stripped from the filename before splitting
    dimensions (dict): dimension name -> list of roles composing its group key
    """

    def __init__(self, arity, fields, interleaved=None, patterns=None,
                 separator="_", suffix=".txt", dimensions=None):
        self.arity = int(arity)
        self.fields = dict(fields)
        self.interleaved = {role: tuple(s) for role, s in (interleaved or {}).items()}
        self.patterns = dict(patterns or {})
        self.separator = separator
        self.suffix = suffix
        self.dimensions = {name: list(roles) for name, roles in (dimensions or {}).items()}
        self._validate()

    def _validate(self):
        if self.arity < 1:
            raise ValueError("Schema arity must be at least 1")
        if not self.separator:
            raise ValueError("Schema separator must not be empty")

        for role, position in self.fields.items():
            if not 0 <= position < self.arity:
                raise ValueError(f"Field '{role}' at position {position} is outside arity {self.arity}")

        for role, token_slice in self.interleaved.items():
            if len(token_slice) != 3:
                raise ValueError(f"Interleaved field '{role}' needs (start, stop, step)")
            if role in self.fields:
                raise ValueError(f"Role '{role}' declared both as field and interleaved field")
            if not range(self.arity)[slice(*token_slice)]:
                raise ValueError(f"Interleaved field '{role}' selects no tokens within arity {self.arity}")

        roles = self.roles
        for role in self.patterns:
            if role not in roles:
                raise ValueError(f"Pattern given for unknown role '{role}'")
        for name, dimension_roles in self.dimensions.items():
            unknown = [r for r in dimension_roles if r not in roles]
            if unknown or not dimension_roles:
                raise ValueError(f"Dimension '{name}' uses unknown roles {unknown}")

    @property
    def roles(self):
        return list(self.fields) + list(self.interleaved)

    def describe(self):
        """Human readable pattern, e.g. '<date>_*_<cell_line>_*_<seed>_*_<density>_<replicate>.txt'."""
        tokens = ['*'] * self.arity
        for role, position in self.fields.items():
            tokens[position] = f"<{role}>"
        for role, token_slice in self.interleaved.items():
            for position in range(self.arity)[slice(*token_slice)]:
                tokens[position] = f"<{role}>"
        return self.separator.join(tokens) + self.suffix

    @classmethod
    def from_dict(cls, schema_dict):
        """Build a schema from a plain dictionary (e.g. loaded from JSON)."""
        if 'arity' not in schema_dict or 'fields' not in schema_dict:
            raise ValueError("Schema needs at least 'arity' and 'fields'")
        return cls(
            arity=schema_dict['arity'],
            fields=schema_dict['fields'],
            interleaved=schema_dict.get('interleaved'),
            patterns=schema_dict.get('patterns'),
            separator=schema_dict.get('separator', "_"),
            suffix=schema_dict.get('suffix', ".txt"),
            dimensions=schema_dict.get('dimensions'),
        )

    def to_dict(self):
        return {
            'arity': self.arity,
            'fields': dict(self.fields),
            'interleaved': {role: list(s) for role, s in self.interleaved.items()},
            'patterns': dict(self.patterns),
            'separator': self.separator,
            'suffix': self.suffix,
            'dimensions': {name: list(roles) for name, roles in self.dimensions.items()},
        }


def load_schema(schema_path):
    """Load a per-run filename schema from a JSON file."""
    if not os.path.exists(schema_path):
        raise FileNotFoundError(f"Schema file not found: {schema_path}")

    with open(schema_path, 'r') as f:
        return FilenameSchema.from_dict(json.load(f))


# ============================================================================
# FILENAME PARSING
# ============================================================================

def parse_filename(filename, schema):
    """
    Decompose one filename into a record of named fields.

    Returns:
    dict: role -> value

    Raises:
    FilenameFormatMismatchError: token count differs from the schema's arity,
        or a value does not match its declared pattern
    """
    base_name = os.path.basename(filename)
    if schema.suffix and base_name.endswith(schema.suffix):
        base_name = base_name[:-len(schema.suffix)]

    tokens = base_name.split(schema.separator)
    if len(tokens) != schema.arity:
        raise FilenameFormatMismatchError(
            filename, schema.describe(),
            f"{len(tokens)} fields, expected {schema.arity}"
        )

    record = {}
    for role, position in schema.fields.items():
        record[role] = tokens[position]
    for role, token_slice in schema.interleaved.items():
        record[role] = schema.separator.join(tokens[slice(*token_slice)])

    for role, pattern in schema.patterns.items():
        if not re.fullmatch(pattern, record[role]):
            raise FilenameFormatMismatchError(
                filename, schema.describe(),
                f"{role} '{record[role]}' does not match {pattern}"
            )

    return record


def parse_filenames(filenames, schema):
    """Parse every filename of a run, failing on the first one that does not match."""
    return [parse_filename(filename, schema) for filename in filenames]


def compose_group_key(record, roles, joiner=" "):
    """Join the values of the given roles into one group key."""
    missing = [role for role in roles if role not in record]
    if missing:
        raise KeyError(f"Record has no value for roles {missing}")
    return joiner.join(record[role] for role in roles)


def label_columns(records, roles, joiner=" "):
    """Group key for every file record, in the same order as the records."""
    return [compose_group_key(record, roles, joiner) for record in records]
