# sitemaps.py - vmops site lookup tables
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Region defaults (vCenter, cluster, storage, OU) and data disk placement across PVSCSI buses

from typing import Dict, List, Optional, Tuple

#==============================================================================
# REGION TABLES
#==============================================================================

# Region code is the VM name prefix, e.g. USE1-APP01 -> USE1
REGIONS: Dict[str, Dict[str, str]] = {
    'USE1': {
        'vcsa': 'vcsa-use1.corp.example.com',
        'cluster': 'USE1-PROD-CL01',
        'datastore_cluster': 'USE1-DSC-PROD',
        'network': 'USE1-VLAN110-Servers',
        'target_ou': 'OU=Servers,OU=USE1,OU=Computers,DC=corp,DC=example,DC=com',
        'ad_server': 'dc01-use1.corp.example.com',
    },
    'USW2': {
        'vcsa': 'vcsa-usw2.corp.example.com',
        'cluster': 'USW2-PROD-CL01',
        'datastore_cluster': 'USW2-DSC-PROD',
        'network': 'USW2-VLAN210-Servers',
        'target_ou': 'OU=Servers,OU=USW2,OU=Computers,DC=corp,DC=example,DC=com',
        'ad_server': 'dc01-usw2.corp.example.com',
    },
    'EUW1': {
        'vcsa': 'vcsa-euw1.corp.example.com',
        'cluster': 'EUW1-PROD-CL01',
        'datastore_cluster': 'EUW1-DSC-PROD',
        'network': 'EUW1-VLAN310-Servers',
        'target_ou': 'OU=Servers,OU=EUW1,OU=Computers,DC=corp,DC=example,DC=com',
        'ad_server': 'dc01-euw1.corp.example.com',
    },
    'APS1': {
        'vcsa': 'vcsa-aps1.corp.example.com',
        'cluster': 'APS1-PROD-CL01',
        'datastore_cluster': 'APS1-DSC-PROD',
        'network': 'APS1-VLAN410-Servers',
        'target_ou': 'OU=Servers,OU=APS1,OU=Computers,DC=corp,DC=example,DC=com',
        'ad_server': 'dc01-aps1.corp.example.com',
    },
}

REGION_KEYS = ('vcsa', 'cluster', 'datastore_cluster', 'network', 'target_ou', 'ad_server')


def load_regions(config, regions=None):
    """
    Merge [REGION <code>] sections from vmops.ini into a region table

    :param config: ConfigParser instance
    :param regions: Table to merge into (default: REGIONS)
    :return: The merged table
    """
    if regions is None:
        regions = REGIONS

    for section in config.sections():
        if not section.upper().startswith('REGION '):
            continue
        code = section[len('REGION '):].strip().upper()
        entry = dict(regions.get(code, {}))
        for key in REGION_KEYS:
            if config.has_option(section, key):
                entry[key] = config.get(section, key).strip()
        regions[code] = entry

    return regions


def region_for_vm(vm_name: str, regions=None) -> Optional[str]:
    """
    Derive the region code from a VM name

    The first '-' separated token is tried, then the first four characters.

    :param vm_name: VM name such as USE1-APP01
    :return: Region code or None
    """
    if regions is None:
        regions = REGIONS
    if not vm_name:
        return None

    token = vm_name.split('-')[0].upper()
    if token in regions:
        return token
    prefix = vm_name[:4].upper()
    if prefix in regions:
        return prefix
    return None


def apply_region_defaults(config, regions=None) -> Optional[str]:
    """
    Fill empty deploy-config fields from the region table.

    Values already present in the config always win. A datastore cluster is
    only filled when neither a datastore nor a datastore cluster is set.

    :param config: DeployConfig
    :return: Region code applied, or None
    """
    if regions is None:
        regions = REGIONS

    region = region_for_vm(config.vmware.vm_name, regions)
    if region is None:
        return None

    defaults = regions[region]
    vmware = config.vmware
    if not vmware.vcsa:
        vmware.vcsa = defaults.get('vcsa', '')
    if not vmware.cluster:
        vmware.cluster = defaults.get('cluster', '')
    if not vmware.network:
        vmware.network = defaults.get('network', '')
    if not vmware.datastore and not vmware.datastore_cluster:
        vmware.datastore_cluster = defaults.get('datastore_cluster', '')
    if not config.ad.target_ou:
        config.ad.target_ou = defaults.get('target_ou', '')
    if not config.ad.server:
        config.ad.server = defaults.get('ad_server', '')

    return region

#==============================================================================
# DISK PLACEMENT
#==============================================================================

# Bus 0 holds the OS disk; data disks rotate across the three PVSCSI data buses
DATA_BUSES = (1, 2, 3)
RESERVED_UNIT = 7  # SCSI controller's own unit number
MAX_UNITS = 16
MAX_DISKS_PER_BUS = MAX_UNITS - 1


def bus_for_disk(index: int) -> int:
    """Bus number for the index-th data disk (0-based), round-robin over DATA_BUSES"""
    return DATA_BUSES[index % len(DATA_BUSES)]


def plan_disk_layout(sizes: List[int], start_index: int = 0,
                     used_units: Dict[int, set] = None) -> List[Tuple[int, int, int]]:
    """
    Place data disks round-robin across the data buses

    :param sizes: Disk sizes in GB, in config order
    :param start_index: Number of data disks already present (keeps the rotation going)
    :param used_units: bus -> set of unit numbers already taken on that bus
    :return: list of (bus, unit, size_gb)
    :raises ValueError: If a bus runs out of unit numbers
    """
    taken = {bus: set(units) for bus, units in (used_units or {}).items()}
    layout = []

    for offset, size in enumerate(sizes):
        bus = bus_for_disk(start_index + offset)
        bus_units = taken.setdefault(bus, set())
        unit = next((u for u in range(MAX_UNITS) if u != RESERVED_UNIT and u not in bus_units), None)
        if unit is None:
            raise ValueError(f'No free unit number left on SCSI bus {bus}')
        bus_units.add(unit)
        layout.append((bus, unit, size))

    return layout
