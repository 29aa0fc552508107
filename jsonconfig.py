# jsonconfig.py - vmops commented JSON loader
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Hand-authored deploy configs carry comments and trailing commas; strip them before json.loads

import json


class ConfigError(ValueError):
    """Raised for unreadable or invalid configuration files"""

    def __init__(self, message, source=None, line=None, column=None):
        self.message = message
        self.source = source
        self.line = line
        self.column = column
        super().__init__(str(self))

    def __str__(self):
        location = self.source or ''
        if self.line is not None:
            location += f':{self.line}'
            if self.column is not None:
                location += f':{self.column}'
        return f'{location}: {self.message}' if location else self.message


def _position(text, index):
    """Return (line, column), both 1-based, of index in text"""
    line = text.count('\n', 0, index) + 1
    column = index - (text.rfind('\n', 0, index) + 1) + 1
    return line, column


def strip_comments(text, source=None):
    """
    Remove comments that sit outside JSON string literals.

    Supported forms:
        // comment to end of line
        # comment, only when '#' is the first non-blank character on the line
        /* block comment, may span lines */

    Removed characters are replaced by spaces and newlines are kept, so line
    and column numbers reported by the JSON parser still match the file.

    :param text: Raw config text
    :param source: File name used in error messages
    :return: Text without comments
    :raises ConfigError: On an unterminated block comment or string
    """
    out = []
    i = 0
    n = len(text)
    in_string = False
    string_start = 0
    line_start = True

    while i < n:
        ch = text[i]

        if in_string:
            out.append(ch)
            if ch == '\\' and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            string_start = i
            line_start = False
            out.append(ch)
            i += 1
            continue

        if text.startswith('//', i) or (ch == '#' and line_start):
            end = text.find('\n', i)
            if end == -1:
                end = n
            out.append(' ' * (end - i))
            i = end
            continue

        if text.startswith('/*', i):
            end = text.find('*/', i + 2)
            if end == -1:
                line, column = _position(text, i)
                raise ConfigError('Unterminated block comment', source, line, column)
            end += 2
            out.append(''.join('\n' if c == '\n' else ' ' for c in text[i:end]))
            i = end
            continue

        out.append(ch)
        if ch == '\n':
            line_start = True
        elif not ch.isspace():
            line_start = False
        i += 1

    if in_string:
        line, column = _position(text, string_start)
        raise ConfigError('Unterminated string', source, line, column)

    return ''.join(out)


def strip_trailing_commas(text):
    """
    Replace a comma followed only by whitespace and a closing '}' or ']' with a space.

    Expects comment-free text; string literals are left alone.
    """
    out = list(text)
    i = 0
    n = len(text)
    in_string = False

    while i < n:
        ch = text[i]
        if in_string:
            if ch == '\\':
                i += 2
                continue
            if ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == ',':
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j < n and text[j] in '}]':
                out[i] = ' '
        i += 1

    return ''.join(out)


def loads(text, source=None):
    """
    Parse commented JSON text

    :param text: Config text
    :param source: File name used in error messages
    :return: Parsed object
    :raises ConfigError: On malformed input
    """
    if text.startswith("\ufeff"):
        text = text[1:]

    cleaned = strip_trailing_commas(strip_comments(text, source))
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ConfigError(e.msg, source, e.lineno, e.colno) from e


def load(path):
    """
    Read and parse a commented JSON file

    :param path: File path
    :return: Parsed object
    :raises ConfigError: If the file cannot be read or parsed
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            text = f.read()
    except OSError as e:
        raise ConfigError(f'Cannot read config: {e.strerror}', path) from e

    return loads(text, source=path)
