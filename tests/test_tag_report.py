#!/usr/bin/env python3
# test_tag_report.py - vmops Tools/tag_report.py Unit Tests
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team

import pytest
import os
import sys
import io
import csv
import json
from unittest.mock import MagicMock, patch

import requests
from pyVmomi import vim

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import tag_report
from vcrest import VcRestError


def make_folder(name, parent):
    folder = MagicMock(spec=vim.Folder)
    folder.name = name
    folder.parent = parent
    return folder


def make_report_vm(name, parent, template=False, guest='Microsoft Windows Server 2022 (64-bit)'):
    vm = MagicMock()
    vm._moId = f'vm-{name.lower()}'
    vm.parent = parent
    vm.config.template = template
    vm.config.guestFullName = guest
    vm.runtime.powerState = 'poweredOn'
    return vm


@pytest.fixture
def inventory():
    """vm root folder with Prod/Web below it and three VMs"""
    datacenter = MagicMock(spec=vim.Datacenter)
    root = make_folder('vm', datacenter)
    web = make_folder('Web', make_folder('Prod', root))
    return {
        make_report_vm('use1-web02', web): 'use1-web02',
        make_report_vm('USE1-WEB01', web): 'USE1-WEB01',
        make_report_vm('tpl-win2022', root, template=True): 'tpl-win2022',
        make_report_vm('USE1-SQL01', root): 'USE1-SQL01',
    }


@pytest.fixture
def opf(mock_opf, inventory):
    mock_opf.get_all_objs.return_value = inventory
    with patch.object(tag_report, 'opf', mock_opf):
        yield mock_opf


class TestCollect:
    """Test folder_path and collect_rows"""

    def test_folder_path(self, inventory):
        paths = {name: tag_report.folder_path(vm) for vm, name in inventory.items()}
        assert paths['USE1-WEB01'] == 'Prod/Web'
        assert paths['USE1-SQL01'] == ''

    def test_collect_rows(self, opf):
        rest = MagicMock()
        rest.tag_names.side_effect = lambda vm_id: ['Environment/Production'] if 'web' in vm_id else []

        rows = tag_report.collect_rows(MagicMock(), rest)

        assert [r['name'] for r in rows] == ['USE1-SQL01', 'USE1-WEB01', 'use1-web02']
        assert rows[1] == {'name': 'USE1-WEB01', 'power_state': 'poweredOn',
                           'guest_os': 'Microsoft Windows Server 2022 (64-bit)',
                           'folder': 'Prod/Web', 'tags': ['Environment/Production']}

    def test_name_filter(self, opf):
        rows = tag_report.collect_rows(MagicMock(), MagicMock(), name_filter='web0[12]')
        assert [r['name'] for r in rows] == ['USE1-WEB01', 'use1-web02']

    def test_tag_lookup_error(self, opf):
        rest = MagicMock()
        rest.tag_names.side_effect = VcRestError('GET', '/cis/tagging/tag-association', 500)
        rows = tag_report.collect_rows(MagicMock(), rest)
        assert all(r['tags'] == [] for r in rows)

    def test_tag_lookup_connection_reset(self, opf):
        rest = MagicMock()
        rest.tag_names.side_effect = requests.exceptions.ConnectionError('reset by peer')
        rows = tag_report.collect_rows(MagicMock(), rest)
        assert len(rows) == 3
        assert all(r['tags'] == [] for r in rows)


class TestWriters:
    """Test CSV and JSON output"""

    ROWS = [{'name': 'USE1-WEB01', 'power_state': 'poweredOn', 'guest_os': 'Windows',
             'folder': 'Prod/Web', 'tags': ['Environment/Production', 'Owner/WebTeam']}]

    def test_write_csv(self):
        out = io.StringIO()
        tag_report.write_csv(self.ROWS, out)
        out.seek(0)
        rows = list(csv.DictReader(out))
        assert rows[0]['tags'] == 'Environment/Production; Owner/WebTeam'
        assert list(rows[0].keys()) == tag_report.COLUMNS

    def test_write_json(self):
        out = io.StringIO()
        tag_report.write_json(self.ROWS, out)
        assert json.loads(out.getvalue())[0]['tags'] == ['Environment/Production', 'Owner/WebTeam']


class TestMain:
    """Test the command line entry point"""

    def test_invalid_filter(self, opf):
        assert tag_report.main(['--vcenter', 'vc01', '--filter', '(']) == 1
        opf.init.assert_not_called()

    def test_json_to_file(self, opf, temp_dir):
        output = os.path.join(temp_dir, 'tags.json')
        with patch.object(tag_report, 'VcRestSession') as mock_rest_cls:
            rest = mock_rest_cls.return_value.__enter__.return_value
            rest.tag_names.return_value = []
            assert tag_report.main(['--vcenter', 'vc01', '--format', 'json', '-o', output]) == 0

        opf.init.assert_called_once_with(config_path=None, console=True)
        opf.disconnect_vcenters.assert_called_once()
        with open(output) as f:
            assert len(json.load(f)) == 3

    def test_connect_failure(self, opf):
        opf.connect_vc.return_value = None
        assert tag_report.main(['--vcenter', 'vc01']) == 1

    def test_rest_login_failure(self, opf):
        with patch.object(tag_report, 'VcRestSession') as mock_rest_cls:
            mock_rest_cls.return_value.__enter__.side_effect = VcRestError('POST', '/session', 401)
            assert tag_report.main(['--vcenter', 'vc01']) == 1
        opf.disconnect_vcenters.assert_called_once()

    def test_rest_login_connection_error(self, opf):
        with patch.object(tag_report, 'VcRestSession') as mock_rest_cls:
            mock_rest_cls.return_value.__enter__.side_effect = requests.exceptions.ConnectionError('reset by peer')
            assert tag_report.main(['--vcenter', 'vc01']) == 1
        opf.disconnect_vcenters.assert_called_once()
