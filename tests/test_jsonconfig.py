#!/usr/bin/env python3
# test_jsonconfig.py - vmops jsonconfig.py Unit Tests
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team

import pytest
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import jsonconfig
from jsonconfig import ConfigError


class TestStripComments:
    """Test strip_comments function"""

    def test_line_comment_removed(self):
        text = '{"a": 1} // trailing note'
        assert jsonconfig.strip_comments(text).rstrip() == '{"a": 1}'

    def test_hash_comment_only_at_line_start(self):
        text = '# header\n  # indented\n{"a": "x#y"}'
        result = jsonconfig.strip_comments(text)
        assert '#' not in result.split('\n')[0]
        assert '#' not in result.split('\n')[1]
        assert '"x#y"' in result

    def test_block_comment_keeps_newlines(self):
        text = '{\n/* one\ntwo\nthree */\n"a": 1}'
        result = jsonconfig.strip_comments(text)
        assert result.count('\n') == text.count('\n')
        assert 'one' not in result
        assert len(result) == len(text)

    def test_comment_markers_inside_strings_preserved(self):
        text = '{"url": "https://vc01/ui", "glob": "/* not a comment */"}'
        assert jsonconfig.strip_comments(text) == text

    def test_escaped_quote_in_string(self):
        text = '{"path": "C:\\\\temp\\" // still string"}'
        assert jsonconfig.strip_comments(text) == text

    def test_unterminated_block_comment(self):
        with pytest.raises(ConfigError) as excinfo:
            jsonconfig.strip_comments('{\n  /* open', source='deploy.json')
        assert excinfo.value.line == 2
        assert excinfo.value.column == 3
        assert 'deploy.json:2:3' in str(excinfo.value)

    def test_unterminated_string(self):
        with pytest.raises(ConfigError, match='Unterminated string'):
            jsonconfig.strip_comments('{"a": "open}')


class TestStripTrailingCommas:
    """Test strip_trailing_commas function"""

    def test_object_and_array(self):
        text = '{"a": [1, 2, ], "b": 3,\n}'
        result = jsonconfig.strip_trailing_commas(text)
        assert result == '{"a": [1, 2  ], "b": 3 \n}'

    def test_comma_in_string_untouched(self):
        text = '{"a": ",}"}'
        assert jsonconfig.strip_trailing_commas(text) == text


class TestLoads:
    """Test loads and load functions"""

    def test_commented_config(self):
        text = """
        // deploy config
        {
            "VMware": {"VMName": "USE1-WEB01", /* inline */ "CPU": 2,},
            # whole line comment
            "Tags": ["Env/Prod",],
        }
        """
        data = jsonconfig.loads(text)
        assert data == {'VMware': {'VMName': 'USE1-WEB01', 'CPU': 2}, 'Tags': ['Env/Prod']}

    def test_bom_tolerated(self):
        assert jsonconfig.loads('\ufeff{"a": 1}') == {'a': 1}

    def test_error_position_matches_source(self):
        text = '// comment\n/* block\n */\n{"a": 1 "b": 2}'
        with pytest.raises(ConfigError) as excinfo:
            jsonconfig.loads(text, source='x.json')
        assert excinfo.value.line == 4
        assert excinfo.value.source == 'x.json'

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            jsonconfig.loads('{')

    def test_load_file(self, temp_dir):
        path = os.path.join(temp_dir, 'c.json')
        with open(path, 'w', encoding='utf-8') as f:
            f.write('{"a": 1, // one\n}')
        assert jsonconfig.load(path) == {'a': 1}

    def test_load_missing_file(self, temp_dir):
        path = os.path.join(temp_dir, 'missing.json')
        with pytest.raises(ConfigError) as excinfo:
            jsonconfig.load(path)
        assert excinfo.value.source == path
