#!/usr/bin/env python3
# test_decommission.py - vmops Tools/decommission.py Unit Tests
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team

import pytest
import os
import sys
import datetime
from unittest.mock import MagicMock, patch

from pyVmomi import vim

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import decommission as decom
from vcrest import VcRestError


@pytest.fixture
def opf(mock_opf):
    """Patch the opsfunctions module used by decommission"""
    mock_opf.stop_vm = MagicMock(return_value=True)
    mock_opf.remove_ad_computer = MagicMock(return_value=True)
    mock_opf.get_network_adapter.return_value = [MagicMock(), MagicMock()]
    with patch.object(decom, 'opf', mock_opf):
        yield mock_opf


@pytest.fixture
def vm():
    vm = MagicMock()
    vm.name = 'USE1-WEB01'
    vm._moId = 'vm-1234'
    vm.config.template = False
    vm.config.annotation = 'Deployed by vmops 2026-01-05 09:12 - CHG0001111'
    return vm


class TestHelpers:
    """Test decom_name, confirm and detach_all_tags"""

    def test_decom_name(self):
        assert decom.decom_name('USE1-WEB01', datetime.date(2026, 10, 19)) == 'USE1-WEB01-DECOM-20261019'

    def test_confirm(self):
        assert decom.confirm('USE1-WEB01', input_func=lambda prompt: ' USE1-WEB01 ')
        assert not decom.confirm('USE1-WEB01', input_func=lambda prompt: 'use1-web01')

    def test_detach_all_tags(self, opf, vm):
        rest = MagicMock()
        rest.list_attached_tags.return_value = ['tag-1', 'tag-2']
        rest.detach_tag.side_effect = [None, VcRestError('DELETE', '/cis/tagging/tag-association/tag-2', 403)]
        assert decom.detach_all_tags(rest, vm) is False
        assert rest.detach_tag.call_count == 2


class TestDecommission:
    """Test the decommission step sequence"""

    def test_rename_path(self, opf, vm):
        rest = MagicMock()
        rest.list_attached_tags.return_value = ['tag-1']

        steps = decom.decommission(MagicMock(), vm, 'CHG0012345', ad_server='dc01', rest=rest)

        assert steps == {'annotate': True, 'power_off': True, 'disconnect': True,
                         'ad_cleanup': True, 'tags': True, 'rename': True}
        notes = opf.set_annotation.call_args[0][1]
        assert notes.startswith('Deployed by vmops')
        assert notes.splitlines()[-1].endswith(' - CHG0012345')
        assert opf.set_network_adapter_connection.call_count == 2
        opf.remove_ad_computer.assert_called_once_with('dc01', 'USE1-WEB01', 'CORP\\svc-vmops', 'MOCK_PW_CHECK_VALUE')
        rest.detach_tag.assert_called_once_with('tag-1', 'vm-1234')
        new_name = vm.Rename_Task.call_args[1]['newName']
        assert new_name.startswith('USE1-WEB01-DECOM-')
        vm.Destroy_Task.assert_not_called()

    def test_delete_path(self, opf, vm):
        steps = decom.decommission(MagicMock(), vm, 'CHG0012345', delete=True)
        assert steps['delete'] is True
        assert 'ad_cleanup' not in steps
        assert 'tags' not in steps
        vm.Destroy_Task.assert_called_once()
        vm.Rename_Task.assert_not_called()

    def test_power_off_failure_stops(self, opf, vm):
        opf.stop_vm.return_value = False
        steps = decom.decommission(MagicMock(), vm, 'CHG0012345', ad_server='dc01', delete=True)
        assert steps['power_off'] is False
        opf.remove_ad_computer.assert_not_called()
        vm.Destroy_Task.assert_not_called()

    def test_best_effort_steps_continue(self, opf, vm):
        opf.set_annotation.side_effect = RuntimeError('no permission')
        opf.remove_ad_computer.side_effect = OSError('dc unreachable')
        steps = decom.decommission(MagicMock(), vm, 'CHG0012345', ad_server='dc01')
        assert steps['annotate'] is False
        assert steps['ad_cleanup'] is False
        assert steps['rename'] is True

    def test_rename_failure(self, opf, vm):
        opf.wait_task.side_effect = RuntimeError('duplicate name')
        steps = decom.decommission(MagicMock(), vm, 'CHG0012345')
        assert steps['rename'] is False

    def test_rename_rejected_by_vcenter(self, opf, vm):
        vm.Rename_Task.side_effect = vim.fault.DuplicateName(msg='The name USE1-WEB01-DECOM already exists.')
        steps = decom.decommission(MagicMock(), vm, 'CHG0012345')
        assert steps['rename'] is False
        assert steps['power_off'] is True
        opf.wait_task.assert_not_called()

    def test_destroy_rejected_by_vcenter(self, opf, vm):
        vm.Destroy_Task.side_effect = vim.fault.InvalidState(msg='The operation is not allowed in the current state.')
        steps = decom.decommission(MagicMock(), vm, 'CHG0012345', delete=True)
        assert steps['delete'] is False

    def test_dry_run(self, opf, vm):
        assert decom.decommission(MagicMock(), vm, 'CHG0012345', ad_server='dc01', dry_run=True) == {'dry_run': True}
        opf.stop_vm.assert_not_called()
        opf.set_annotation.assert_not_called()


class TestMain:
    """Test the command line entry point"""

    ARGS = ['--vm', 'USE1-WEB01', '--vcenter', 'vc01.corp.example.com', '--change', 'chg0012345']

    def test_bad_change_number(self, opf):
        assert decom.main(['--vm', 'X', '--vcenter', 'vc', '--change', 'INC42', '--yes']) == 1
        opf.init.assert_not_called()

    def test_confirmation_mismatch(self, opf):
        with patch.object(decom, 'confirm', return_value=False):
            assert decom.main(self.ARGS) == 1
        opf.connect_vc.assert_not_called()

    def test_refuses_template(self, opf, vm):
        vm.config.template = True
        opf.get_vm.return_value = vm
        assert decom.main(self.ARGS + ['--yes']) == 1
        opf.stop_vm.assert_not_called()
        opf.disconnect_vcenters.assert_called_once()

    def test_vm_not_found(self, opf):
        assert decom.main(self.ARGS + ['--yes']) == 1

    def test_success(self, opf, vm):
        opf.get_vm.return_value = vm
        with patch.object(decom, 'VcRestSession') as mock_rest_cls, \
             patch.object(decom, 'decommission', return_value={'power_off': True, 'rename': True}) as mock_decom:
            assert decom.main(self.ARGS + ['--yes', '--ad-server', 'dc02']) == 0

        args, kwargs = mock_decom.call_args
        assert args[2] == 'CHG0012345'
        assert kwargs['ad_server'] == 'dc02'
        assert kwargs['rest'] is mock_rest_cls.return_value
        mock_rest_cls.return_value.logout.assert_called_once()

    def test_rest_unavailable_continues(self, opf, vm):
        opf.get_vm.return_value = vm
        with patch.object(decom, 'VcRestSession') as mock_rest_cls, \
             patch.object(decom, 'decommission', return_value={'power_off': True, 'delete': True}) as mock_decom:
            mock_rest_cls.return_value.login.side_effect = VcRestError('POST', '/session', 401)
            assert decom.main(self.ARGS + ['--yes', '--delete']) == 0
        assert mock_decom.call_args[1]['rest'] is None

    def test_required_step_failed(self, opf, vm):
        opf.get_vm.return_value = vm
        with patch.object(decom, 'VcRestSession'), \
             patch.object(decom, 'decommission', return_value={'power_off': False}):
            assert decom.main(self.ARGS + ['--yes']) == 1
