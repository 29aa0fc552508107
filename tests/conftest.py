#!/usr/bin/env python3
# conftest.py - vmops Pytest Configuration and Fixtures
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Shared fixtures for all test modules

import pytest
import os
import sys
import json
import tempfile
import importlib.util
from unittest.mock import MagicMock
from configparser import ConfigParser

from pyVmomi import vim

# Add parent directory and Tools directory to path for imports
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, parent_dir)
sys.path.insert(0, os.path.join(parent_dir, 'Tools'))

DEPLOY_DIR = os.path.join(parent_dir, 'Deploy')

#==============================================================================
# FIXTURES - Mock Objects
#==============================================================================

@pytest.fixture
def mock_opf():
    """Create a mock opsfunctions module with common attributes"""
    mock = MagicMock()

    mock.vcuser = 'administrator@vsphere.local'
    mock.aduser = 'CORP\\svc-vmops'
    mock.addomain = 'corp.example.com'
    mock.adserver = 'dc01-use1.corp.example.com'
    mock.guestuser = 'Administrator'
    mock.sleep_seconds = 0
    mock.statedir = '/tmp/vmops-state'
    mock.override_dir = ''
    mock.verify_ssl = False

    mock.config = ConfigParser()
    mock.config.add_section('VCENTER')
    mock.config.set('VCENTER', 'user', 'administrator@vsphere.local')
    mock.config.add_section('AD')
    mock.config.set('AD', 'domain', 'corp.example.com')

    # Mock methods
    mock.write_output = MagicMock()
    mock.get_password = MagicMock(return_value='MOCK_PW_CHECK_VALUE')
    mock.opsfail = MagicMock()
    mock.ops_sleep = MagicMock()
    mock.wait_task = MagicMock(return_value=None)
    mock.get_vm = MagicMock(return_value=None)
    mock.start_vm = MagicMock(return_value=True)
    mock.wait_for_tools = MagicMock(return_value=True)
    mock.tools_running = MagicMock(return_value=True)
    mock.poll_until = MagicMock(return_value=True)
    mock.get_network_adapter = MagicMock(return_value=[])
    mock.set_network_adapter_connection = MagicMock(return_value=True)
    mock.ad_computer_exists = MagicMock(return_value=False)
    mock.run_guest_powershell = MagicMock(return_value=0)

    return mock


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def sample_config_dict():
    """A complete deploy config as parsed from JSON"""
    return {
        'VMware': {
            'VCSA': 'vcsa-use1.corp.example.com',
            'Cluster': 'USE1-PROD-CL01',
            'VMFolder': 'Prod/Web',
            'Network': 'USE1-VLAN110-Servers',
            'DatastoreCluster': 'USE1-DSC-PROD',
            'ContentLibrary': {
                'Library': 'Templates',
                'Item': 'win2022-std',
                'LocalTemplateName': 'tpl-win2022',
                'ForceReplace': False,
            },
            'VMName': 'USE1-WEB01',
            'CustomizationSpec': 'Win2022-Domain',
            'Hardware': {
                'CPU': 4,
                'MemoryGB': 16,
                'DiskGB': 100,
                'AdditionalDisks': [50, {'SizeGB': 200, 'Label': 'Logs'}],
            },
        },
        'AD': {
            'TargetOU': 'OU=Web,OU=Servers,DC=corp,DC=example,DC=com',
            'Server': 'dc01-use1.corp.example.com',
            'UseVCenterCreds': False,
            'WaitForSeconds': 600,
        },
        'Options': {
            'PowerOn': True,
            'EnsureNICConnected': True,
            'RemoveExtraCDROMs': True,
            'ToolsWaitSeconds': 900,
            'PostPowerOnDelay': 15,
        },
        'ChangeRequestNumber': 'CHG0012345',
        'Tags': ['Environment/Production', {'Category': 'Owner', 'Tag': 'WebTeam'}],
    }


@pytest.fixture
def sample_config_file(temp_dir, sample_config_dict):
    """Write the sample config to disk with comments and a trailing comma"""
    path = os.path.join(temp_dir, 'deploy.json')
    body = json.dumps(sample_config_dict, indent=2)
    text = ('// USE1 web tier deploy\n'
            '/* reviewed for CHG0012345 */\n'
            + body[:-1].rstrip() + ',\n}\n')
    with open(path, 'w') as f:
        f.write(text)
    return path


@pytest.fixture
def sample_config(sample_config_dict):
    """Parsed DeployConfig for the sample"""
    from deployconfig import DeployConfig
    return DeployConfig.from_dict(sample_config_dict, source_path='deploy.json')


@pytest.fixture
def make_ctx(sample_config):
    """Factory for a DeployContext-like object around the sample config"""
    def _make(config=None, vm=None, template=None, rest=None):
        ctx = MagicMock()
        ctx.config = config or sample_config
        ctx.si = MagicMock()
        ctx.vm = vm
        ctx.template = template
        ctx.rest = rest
        ctx.results = {}
        return ctx
    return _make

#==============================================================================
# FIXTURES - Fake vSphere Objects
#==============================================================================

def make_controller(bus, key=None, cls=vim.vm.device.ParaVirtualSCSIController):
    ctrl = MagicMock(spec=cls)
    ctrl.busNumber = bus
    ctrl.key = key if key is not None else 1000 + bus
    return ctrl


def make_disk(controller_key, unit, size_gb, key=None):
    disk = MagicMock(spec=vim.vm.device.VirtualDisk)
    disk.controllerKey = controller_key
    disk.unitNumber = unit
    disk.capacityInKB = size_gb * 1024 * 1024
    disk.key = key if key is not None else 2000 + controller_key * 16 + unit
    return disk


def make_cdrom(key, label):
    cdrom = MagicMock(spec=vim.vm.device.VirtualCdrom)
    cdrom.key = key
    cdrom.deviceInfo = MagicMock(label=label)
    return cdrom


@pytest.fixture
def fake_vm():
    """A powered-off VM with one LSI controller, a 60GB OS disk and two CD-ROMs"""
    vm = MagicMock()
    vm.name = 'USE1-WEB01'
    vm._moId = 'vm-1234'
    vm.config.template = False
    vm.config.annotation = ''
    vm.config.hardware.numCPU = 2
    vm.config.hardware.numCoresPerSocket = 1
    vm.config.hardware.memoryMB = 8192
    vm.config.cpuHotAddEnabled = False
    vm.config.memoryHotAddEnabled = False
    vm.runtime.powerState = vim.VirtualMachinePowerState.poweredOff

    lsi = make_controller(0, key=1000, cls=vim.vm.device.VirtualLsiLogicSASController)
    vm.config.hardware.device = [
        lsi,
        make_disk(1000, 0, 60),
        make_cdrom(3000, 'CD/DVD drive 1'),
        make_cdrom(3001, 'CD/DVD drive 2'),
    ]
    return vm


@pytest.fixture
def load_stage():
    """Load a Deploy/ stage module by name"""
    def _load(name):
        spec = importlib.util.spec_from_file_location(f'test_stage_{name}', os.path.join(DEPLOY_DIR, f'{name}.py'))
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module
    return _load


#==============================================================================
# MARKERS
#==============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "network: marks tests that require network access"
    )
