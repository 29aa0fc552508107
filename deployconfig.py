# deployconfig.py - vmops Deploy Configuration
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Typed view of the deploy JSON (VMware / AD / Options / ChangeRequestNumber) with alias handling

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import jsonconfig
from jsonconfig import ConfigError
import sitemaps

CHG_PATTERN = re.compile(r'^CHG\d+$', re.IGNORECASE)
# NetBIOS computer names: 15 characters, none of \ / : * ? " < > | . or whitespace
NETBIOS_PATTERN = re.compile(r'^[^\\/:*?"<>|.\s]{1,15}$')

#==============================================================================
# DATA CLASSES
#==============================================================================

@dataclass
class DiskSpec:
    size_gb: int
    label: str = ''


@dataclass
class TagSpec:
    category: str
    name: str

    def __str__(self):
        return f'{self.category}/{self.name}'


@dataclass
class ContentLibraryConfig:
    library: str = ''
    item: str = ''
    local_template_name: str = ''
    force_replace: bool = False

    @property
    def template_name(self) -> str:
        """Name of the local template materialized from the library item"""
        return self.local_template_name or self.item


@dataclass
class HardwareConfig:
    cpu: Optional[int] = None
    memory_gb: Optional[float] = None
    disk_gb: Optional[int] = None
    cores_per_socket: Optional[int] = None
    additional_disks: List[DiskSpec] = field(default_factory=list)


@dataclass
class VMwareConfig:
    vcsa: str = ''
    cluster: str = ''
    vm_folder: str = ''
    network: str = ''
    datastore: str = ''
    datastore_cluster: str = ''
    vm_name: str = ''
    customization_spec: str = ''
    content_library: ContentLibraryConfig = field(default_factory=ContentLibraryConfig)
    hardware: HardwareConfig = field(default_factory=HardwareConfig)


@dataclass
class ADConfig:
    target_ou: str = ''
    server: str = ''
    domain: str = ''
    use_vcenter_creds: bool = False
    wait_for_seconds: int = 300


@dataclass
class OptionsConfig:
    power_on: bool = True
    ensure_nic_connected: bool = True
    remove_extra_cdroms: bool = True
    tools_wait_seconds: int = 600
    post_power_on_delay: int = 30


@dataclass
class DeployConfig:
    vmware: VMwareConfig = field(default_factory=VMwareConfig)
    ad: ADConfig = field(default_factory=ADConfig)
    options: OptionsConfig = field(default_factory=OptionsConfig)
    change_request_number: str = ''
    tags: List[TagSpec] = field(default_factory=list)
    notes: str = ''
    source_path: str = ''
    region: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source_path: str = '') -> 'DeployConfig':
        """
        Build a DeployConfig from the parsed JSON

        Keys match case-insensitively and the aliases seen across the
        deploy script variants are accepted (MemGB, NumCPU, Folder, CHG ...).

        :param data: Parsed JSON object
        :param source_path: File the data came from (for messages)
        :raises ConfigError: If a section or value has the wrong type
        """
        if not isinstance(data, dict):
            raise ConfigError('Top level of a deploy config must be an object', source_path)

        vmw = _section(data, 'VMware', source_path)
        cl = _section(vmw, 'ContentLibrary', source_path)
        hw = _section(vmw, 'Hardware', source_path)
        ad = _section(data, 'AD', source_path)
        opts = _section(data, 'Options', source_path)

        datastore = _str(_get(vmw, 'Datastore'))
        datastore_cluster = _str(_get(vmw, 'DatastoreCluster', 'StoragePod'))

        vmware = VMwareConfig(
            vcsa=_str(_get(vmw, 'VCSA', 'vCenter', 'VCenterServer')),
            cluster=_str(_get(vmw, 'Cluster')),
            vm_folder=_str(_get(vmw, 'VMFolder', 'Folder')),
            network=_str(_get(vmw, 'Network', 'PortGroup')),
            datastore=datastore,
            datastore_cluster=datastore_cluster,
            vm_name=_str(_get(vmw, 'VMName', 'Name') or _get(data, 'VMName')),
            customization_spec=_str(_get(vmw, 'CustomizationSpec', 'OSCustomizationSpec')),
            content_library=ContentLibraryConfig(
                library=_str(_get(cl, 'Library', 'LibraryName')),
                item=_str(_get(cl, 'Item', 'ItemName', 'Template')),
                local_template_name=_str(_get(cl, 'LocalTemplateName', 'LocalTemplate')),
                force_replace=_bool(_get(cl, 'ForceReplace'), False),
            ),
            hardware=HardwareConfig(
                cpu=_int(_get(hw, 'CPU', 'NumCPU', 'vCPU'), 'CPU', source_path),
                memory_gb=_float(_get(hw, 'MemoryGB', 'MemGB', 'RAMGB'), 'MemoryGB', source_path),
                disk_gb=_int(_get(hw, 'DiskGB', 'OSDiskGB'), 'DiskGB', source_path),
                cores_per_socket=_int(_get(hw, 'CoresPerSocket'), 'CoresPerSocket', source_path),
                additional_disks=_disks(_get(hw, 'AdditionalDisks', 'DataDisks'), source_path),
            ),
        )

        return cls(
            vmware=vmware,
            ad=ADConfig(
                target_ou=_str(_get(ad, 'TargetOU', 'OU', 'OUPath')),
                server=_str(_get(ad, 'Server', 'DomainController')),
                domain=_str(_get(ad, 'Domain', 'DomainName')),
                use_vcenter_creds=_bool(_get(ad, 'UseVCenterCreds'), False),
                wait_for_seconds=_int_default(_get(ad, 'WaitForSeconds'), 300, 'WaitForSeconds', source_path),
            ),
            options=OptionsConfig(
                power_on=_bool(_get(opts, 'PowerOn'), True),
                ensure_nic_connected=_bool(_get(opts, 'EnsureNICConnected'), True),
                remove_extra_cdroms=_bool(_get(opts, 'RemoveExtraCDROMs'), True),
                tools_wait_seconds=_int_default(_get(opts, 'ToolsWaitSeconds'), 600, 'ToolsWaitSeconds', source_path),
                post_power_on_delay=_int_default(_get(opts, 'PostPowerOnDelay'), 30, 'PostPowerOnDelay', source_path),
            ),
            change_request_number=_str(_get(data, 'ChangeRequestNumber', 'CHG', 'Change')).upper(),
            tags=_tags(_get(data, 'Tags') or _get(vmw, 'Tags'), source_path),
            notes=_str(_get(data, 'Notes') or _get(vmw, 'Notes')),
            source_path=source_path,
        )

    @property
    def ad_join_requested(self) -> bool:
        return bool(self.ad.target_ou)

    def validate(self) -> List[str]:
        """
        Check the config for problems

        :return: list of problem descriptions (empty when valid)
        """
        problems = []
        vmw = self.vmware
        hw = vmw.hardware

        if not vmw.vcsa:
            problems.append('VMware.VCSA is required')
        if not vmw.cluster:
            problems.append('VMware.Cluster is required')
        if not vmw.vm_name:
            problems.append('VMware.VMName is required')
        if not vmw.datastore and not vmw.datastore_cluster:
            problems.append('One of VMware.Datastore or VMware.DatastoreCluster is required')
        if vmw.datastore and vmw.datastore_cluster:
            problems.append('VMware.Datastore and VMware.DatastoreCluster are mutually exclusive')

        if hw.cpu is not None and hw.cpu < 1:
            problems.append('Hardware.CPU must be at least 1')
        if hw.cores_per_socket is not None and hw.cpu and (hw.cores_per_socket < 1 or hw.cpu % hw.cores_per_socket):
            problems.append('Hardware.CoresPerSocket must divide Hardware.CPU')
        if hw.memory_gb is not None and hw.memory_gb <= 0:
            problems.append('Hardware.MemoryGB must be greater than 0')
        if hw.disk_gb is not None and hw.disk_gb <= 0:
            problems.append('Hardware.DiskGB must be greater than 0')
        for index, disk in enumerate(hw.additional_disks):
            if disk.size_gb <= 0:
                problems.append(f'Hardware.AdditionalDisks[{index}] must be greater than 0 GB')
        max_disks = sitemaps.MAX_DISKS_PER_BUS * len(sitemaps.DATA_BUSES)
        if len(hw.additional_disks) > max_disks:
            problems.append(f'At most {max_disks} additional disks are supported')

        if self.ad_join_requested and vmw.vm_name and not NETBIOS_PATTERN.match(vmw.vm_name):
            problems.append(f'VMName {vmw.vm_name!r} is not a valid NetBIOS computer name for an AD join')
        if self.change_request_number and not CHG_PATTERN.match(self.change_request_number):
            problems.append(f'ChangeRequestNumber {self.change_request_number!r} must look like CHG0012345')

        if vmw.content_library.library and not vmw.content_library.item:
            problems.append('VMware.ContentLibrary.Item is required when Library is set')

        return problems

#==============================================================================
# LOADING
#==============================================================================

def prompt_missing(config: DeployConfig, input_func=input) -> DeployConfig:
    """
    Ask the operator for a VM name and change number when the config has none

    :param config: DeployConfig to complete in place
    :param input_func: Prompt function (input by default)
    """
    if not config.vmware.vm_name:
        config.vmware.vm_name = input_func('VM name: ').strip()
    if not config.change_request_number:
        config.change_request_number = input_func('Change request number (CHG...): ').strip().upper()
    return config


def load_deploy_config(path, prompt=False, input_func=input, region_defaults=True,
                       overrides: Dict[str, str] = None) -> DeployConfig:
    """
    Load, complete and validate a deploy config

    :param path: JSON file
    :param prompt: Prompt for missing VM name / change number
    :param input_func: Prompt function
    :param region_defaults: Fill empty fields from the region tables
    :param overrides: vm_name / change_request_number given on the command line
    :return: DeployConfig
    :raises ConfigError: Listing every validation problem
    """
    config = DeployConfig.from_dict(jsonconfig.load(path), source_path=str(path))

    overrides = overrides or {}
    if overrides.get('vm_name'):
        config.vmware.vm_name = overrides['vm_name']
    if overrides.get('change_request_number'):
        config.change_request_number = overrides['change_request_number'].upper()

    if prompt:
        prompt_missing(config, input_func)

    if region_defaults:
        config.region = sitemaps.apply_region_defaults(config) or ''

    problems = config.validate()
    if problems:
        raise ConfigError('Invalid deploy config: ' + '; '.join(problems), str(path))

    return config

#==============================================================================
# VALUE HELPERS
#==============================================================================

def _get(data, *names):
    """Case-insensitive lookup of the first present name"""
    if not isinstance(data, dict):
        return None
    lowered = {str(k).lower(): v for k, v in data.items()}
    for name in names:
        if name.lower() in lowered:
            return lowered[name.lower()]
    return None


def _section(data, name, source):
    value = _get(data, name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f'{name} must be an object', source)
    return value


def _str(value) -> str:
    return '' if value is None else str(value).strip()


def _bool(value, default: bool) -> bool:
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ('true', 'yes', 'y', '1', 'on')


def _int(value, name, source) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f'{name} must be a whole number, got {value!r}', source)


def _int_default(value, default, name, source) -> int:
    parsed = _int(value, name, source)
    return default if parsed is None else parsed


def _float(value, name, source) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f'{name} must be a number, got {value!r}', source)


def _disks(value, source) -> List[DiskSpec]:
    if value is None:
        return []
    if isinstance(value, (int, float)):
        value = [value]
    if not isinstance(value, list):
        raise ConfigError('Hardware.AdditionalDisks must be a list', source)

    disks = []
    for index, entry in enumerate(value):
        if isinstance(entry, dict):
            size = _int(_get(entry, 'SizeGB', 'CapacityGB', 'GB'), f'AdditionalDisks[{index}].SizeGB', source)
            if size is None:
                raise ConfigError(f'AdditionalDisks[{index}] needs SizeGB', source)
            disks.append(DiskSpec(size_gb=size, label=_str(_get(entry, 'Label', 'Name'))))
        else:
            size = _int(entry, f'AdditionalDisks[{index}]', source)
            if size is None:
                raise ConfigError(f'AdditionalDisks[{index}] needs a size in GB', source)
            disks.append(DiskSpec(size_gb=size))
    return disks


def _tags(value, source) -> List[TagSpec]:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]

    tags = []
    for entry in value:
        if isinstance(entry, dict):
            category = _str(_get(entry, 'Category'))
            name = _str(_get(entry, 'Tag', 'Name'))
        else:
            category, _, name = _str(entry).partition('/')
        if not category or not name:
            raise ConfigError(f'Tag {entry!r} must be "Category/Tag" or {{"Category", "Tag"}}', source)
        tags.append(TagSpec(category=category.strip(), name=name.strip()))
    return tags
