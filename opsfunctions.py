# opsfunctions.py - vmops Core Functions Library
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# vCenter, guest and Active Directory helpers shared by the deploy, decommission and report tools

import os
import sys
import time
import socket
import base64
import getpass
import datetime
import logging
import urllib3
from configparser import ConfigParser
from pyVim import connect
from pyVmomi import vim, vmodl
from pyVim.task import WaitForTask
from pypsexec.client import Client

import sitemaps

# Default logging level is WARNING (other levels are DEBUG, INFO, ERROR and CRITICAL)
logging.basicConfig(level=logging.WARNING)
# vCenters in the estate still present self-signed certificates
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

#==============================================================================
# STATIC VARIABLES
#==============================================================================

sleep_seconds = 10

home = os.path.expanduser('~')
opsroot = os.environ.get('VMOPS_HOME', f'{home}/vmops')

configname = 'vmops.ini'
configini = os.environ.get('VMOPS_CONFIG', f'/etc/vmops/{configname}')
creds = f'{opsroot}/creds.txt'
logdir = f'{opsroot}/logs'
statedir = f'{opsroot}/state'
override_dir = f'{opsroot}/Deploy'

# Log file name
logfile = 'vmops.log'
logfiles = [f'{logdir}/{logfile}']

max_minutes_before_fail = 120
start_time = datetime.datetime.now()

vcuser = 'administrator@vsphere.local'
aduser = ''
addomain = ''
adserver = ''
guestuser = 'Administrator'
verify_ssl = False

sis = []  # all vCenter session instances
sisvc = {}  # dictionary to hold all vCenter session instances indexed by host name

POWERSHELL = 'C:\\Windows\\System32\\WindowsPowerShell\\v1.0\\powershell.exe'

# Config parser
config = ConfigParser()

# Passwords keyed by kind (vcenter, ad, guest) once read from creds.txt or the environment
_passwords = {}
PASSWORD_ENV = {
    'vcenter': 'VMOPS_VC_PASSWORD',
    'ad': 'VMOPS_AD_PASSWORD',
    'guest': 'VMOPS_GUEST_PASSWORD',
}

# Console output flag (set to False when stdout is already captured to the log)
console_output = True

#==============================================================================
# INITIALIZATION
#==============================================================================

def init(config_path=None, **kwargs):
    """
    Initialize the opsfunctions module from vmops.ini

    :param config_path: Path to vmops.ini (defaults to VMOPS_CONFIG or /etc/vmops/vmops.ini)
    :param kwargs: console - override console output setting
    """
    global configini, creds, logdir, statedir, override_dir, logfiles
    global vcuser, aduser, addomain, adserver, guestuser, verify_ssl
    global sleep_seconds, max_minutes_before_fail, console_output, start_time

    if config_path:
        configini = config_path
    if 'console' in kwargs:
        console_output = kwargs['console']
    start_time = datetime.datetime.now()

    if os.path.isfile(configini):
        config.read(configini)

    logdir = get_config_value('PATHS', 'logdir', logdir)
    statedir = get_config_value('PATHS', 'statedir', statedir)
    creds = get_config_value('PATHS', 'creds', creds)
    override_dir = get_config_value('PATHS', 'overrides', override_dir)
    logfiles = [f'{logdir}/{logfile}']

    vcuser = get_config_value('VCENTER', 'user', vcuser)
    verify_ssl = get_config_value('VCENTER', 'verify_ssl', 'false').lower() in ('true', 'yes', '1')
    aduser = get_config_value('AD', 'user', aduser)
    addomain = get_config_value('AD', 'domain', addomain)
    adserver = get_config_value('AD', 'server', adserver)
    guestuser = get_config_value('GUEST', 'user', guestuser)

    if config.has_option('TIMING', 'sleep_seconds'):
        sleep_seconds = config.getint('TIMING', 'sleep_seconds')
    if config.has_option('TIMING', 'maxminutes'):
        max_minutes_before_fail = config.getint('TIMING', 'maxminutes')

    sitemaps.load_regions(config)

    _passwords.clear()
    load_creds()

    write_output(f'opsfunctions initialized: config={configini}, vcuser={vcuser}, logdir={logdir}')

#==============================================================================
# CONFIG HELPER FUNCTIONS
#==============================================================================

def get_config_list(section: str, option: str, fallback: list = None) -> list:
    """
    Get a config option as a list, dropping commented lines.

    Multiline values are split on newlines, single-line values on commas.
    Entries starting with '#' or ';' are treated as if they don't exist.

    :param section: Config section name (e.g., 'REGIONS')
    :param option: Config option name
    :param fallback: Default value if option doesn't exist (default: empty list)
    :return: List of non-commented, non-empty values
    """
    if fallback is None:
        fallback = []

    if not config.has_option(section, option):
        return fallback

    raw_value = config.get(section, option)
    if not raw_value:
        return fallback

    separator = '\n' if '\n' in raw_value else ','
    result = []
    for line in raw_value.split(separator):
        stripped = line.strip()
        if not stripped or stripped.startswith('#') or stripped.startswith(';'):
            continue
        result.append(stripped)
    return result


def get_config_value(section: str, option: str, fallback: str = '') -> str:
    """
    Get a config option value; a value starting with '#' or ';' counts as unset.

    :param section: Config section name
    :param option: Config option name
    :param fallback: Default value if option doesn't exist or is commented
    :return: Config value or fallback
    """
    if not config.has_option(section, option):
        return fallback

    value = config.get(section, option).strip()
    if not value or value.startswith('#') or value.startswith(';'):
        return fallback
    return value

#==============================================================================
# PASSWORD FUNCTIONS
#==============================================================================

def load_creds(path=None):
    """
    Read passwords from the creds file.

    Lines are 'kind=password' (kinds: vcenter, ad, guest). A file holding a
    single bare line is used for every kind.

    :param path: creds file (defaults to the configured one)
    :return: dict of kind -> password
    """
    path = path or creds
    if not os.path.isfile(path):
        return {}

    with open(path, 'r') as f:
        lines = [line.strip() for line in f if line.strip() and not line.strip().startswith('#')]

    found = {}
    if len(lines) == 1 and '=' not in lines[0]:
        for kind in PASSWORD_ENV:
            found[kind] = lines[0]
    else:
        for line in lines:
            if '=' not in line:
                continue
            kind, _, value = line.partition('=')
            found[kind.strip().lower()] = value.strip()

    _passwords.update(found)
    return found


def get_password(kind='vcenter', prompt=False) -> str:
    """
    Get a password by kind.

    Lookup order is the environment (VMOPS_VC_PASSWORD, VMOPS_AD_PASSWORD,
    VMOPS_GUEST_PASSWORD), then creds.txt, then an interactive prompt when
    prompt is True and stdin is a terminal. The result is cached.

    :param kind: vcenter, ad or guest
    :param prompt: Whether to ask the operator when nothing is configured
    :return: Password string, or empty string if not found
    """
    env_name = PASSWORD_ENV.get(kind)
    if env_name and os.environ.get(env_name):
        return os.environ[env_name]

    if kind not in _passwords:
        load_creds()

    if not _passwords.get(kind) and prompt and sys.stdin.isatty():
        _passwords[kind] = getpass.getpass(f'{kind} password: ')

    return _passwords.get(kind, '')

#==============================================================================
# OUTPUT AND LOGGING
#==============================================================================

def write_output(msg, **kwargs):
    """
    Write output to log files and optionally to console

    :param msg: Message to write
    :param kwargs:
        logfile - specific logfile path
        console - override console output setting (True/False)
    """
    timestamp = datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    formatted_msg = f'[{timestamp}] {msg}'

    lfile = kwargs.get('logfile', None)
    print_to_console = kwargs.get('console', console_output)

    targets = [lfile] if lfile else logfiles
    for lf in targets:
        try:
            os.makedirs(os.path.dirname(lf), exist_ok=True)
            with open(lf, 'a') as f:
                f.write(formatted_msg + '\n')
        except OSError as e:
            logging.debug(f'Error writing to {lf}: {e}')

    if print_to_console:
        print(formatted_msg)

#==============================================================================
# FAILURE AND TIMING
#==============================================================================

def opsfail(reason):
    """
    Log a fatal failure and exit

    :param reason: Failure reason
    """
    write_output(f'OPERATION FAILED: {reason}')
    sys.exit(1)


def ops_sleep(seconds):
    """
    Sleep with overall run timeout checking

    :param seconds: Seconds to sleep
    """
    elapsed = datetime.datetime.now() - start_time
    if elapsed.total_seconds() / 60 > max_minutes_before_fail:
        opsfail(f'Timeout exceeded ({max_minutes_before_fail} minutes)')

    time.sleep(seconds)


def poll_until(check, timeout, interval=None, description='condition'):
    """
    Call check() until it returns a truthy value or the deadline passes.

    Exceptions raised by check() count as "not yet" and are logged.

    :param check: Callable with no arguments
    :param timeout: Seconds before giving up
    :param interval: Seconds between attempts (default sleep_seconds)
    :param description: Text used in log lines
    :return: True if the condition was met, False on timeout
    """
    if interval is None:
        interval = sleep_seconds

    deadline = time.time() + timeout
    while True:
        try:
            if check():
                return True
        except Exception as e:
            write_output(f'Waiting for {description}: {e}')

        remaining = deadline - time.time()
        if remaining <= 0:
            write_output(f'Timeout waiting for {description} after {timeout} seconds')
            return False
        time.sleep(min(interval, remaining))


def retry_call(func, *args, attempts=3, delay=None, description=None, **kwargs):
    """
    Call func(*args, **kwargs), retrying on any exception.

    :param func: Callable to invoke
    :param attempts: Total number of attempts
    :param delay: Seconds between attempts (default sleep_seconds)
    :param description: Text used in log lines (default func.__name__)
    :return: Whatever func returns
    :raises: The last exception once attempts are exhausted
    """
    if delay is None:
        delay = sleep_seconds
    description = description or getattr(func, '__name__', 'call')

    for attempt in range(1, attempts + 1):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if attempt >= attempts:
                write_output(f'{description} failed after {attempts} attempts: {e}')
                raise
            write_output(f'{description} failed (attempt {attempt}/{attempts}): {e} - retrying in {delay}s')
            time.sleep(delay)

#==============================================================================
# NETWORK TESTING
#==============================================================================

def test_tcp_port(host, port, **kwargs):
    """
    Test if a TCP port is open

    :param host: Hostname or IP
    :param port: Port number
    :return: True if port is open
    """
    timeout = kwargs.get('timeout', 5)

    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        result = sock.connect_ex((host, port))
        sock.close()
        return result == 0
    except OSError:
        return False

#==============================================================================
# REMOTE POWERSHELL (domain controllers)
#==============================================================================

def ps_quote(value) -> str:
    """Quote a value as a PowerShell single-quoted string literal"""
    return "'" + str(value).replace("'", "''") + "'"


def encode_powershell(script: str) -> str:
    """Encode a script for powershell.exe -EncodedCommand (base64 of UTF-16LE)"""
    return base64.b64encode(script.encode('utf-16-le')).decode('ascii')


def run_remote_powershell(server, script, username, password, **kwargs):
    """
    Run a PowerShell script on a Windows server over SMB (PsExec service)

    :param server: Target hostname (typically a domain controller)
    :param script: PowerShell script text
    :param username: Account with admin rights on the server
    :param password: Password for username
    :param kwargs: timeout - seconds to wait for the process
    :return: tuple (stdout, stderr, return code)
    """
    timeout = kwargs.get('timeout', 120)
    arguments = f'-NoProfile -NonInteractive -EncodedCommand {encode_powershell(script)}'

    client = Client(server, username=username, password=password, encrypt=True)
    client.connect()
    try:
        client.create_service()
        stdout, stderr, rc = client.run_executable('powershell.exe', arguments=arguments, timeout_seconds=timeout)
    finally:
        try:
            client.remove_service()
        finally:
            client.disconnect()

    return (stdout.decode('utf-8', errors='replace') if stdout else '',
            stderr.decode('utf-8', errors='replace') if stderr else '',
            rc)


def ad_computer_exists(server, name, username, password):
    """
    Check whether a computer object exists in Active Directory

    :param server: Domain controller to query
    :param name: Computer (NetBIOS) name
    :return: True if found, False if not found, None if the check could not run
    """
    if not test_tcp_port(server, 445, timeout=5):
        write_output(f'Domain controller {server} is not reachable on 445/tcp')
        return None

    script = (f'Import-Module ActiveDirectory; '
              f'if (Get-ADComputer -Filter "Name -eq {ps_quote(name)}") {{ exit 0 }} else {{ exit 1 }}')
    try:
        _, stderr, rc = run_remote_powershell(server, script, username, password)
    except Exception as e:
        write_output(f'AD lookup for {name} on {server} failed: {e}')
        return None

    if rc not in (0, 1):
        write_output(f'AD lookup for {name} on {server} returned {rc}: {stderr.strip()}')
        return None
    return rc == 0


def remove_ad_computer(server, name, username, password):
    """
    Remove a computer object (and any leaf objects under it) from Active Directory

    :return: True if removed or already absent
    """
    script = (f'Import-Module ActiveDirectory; '
              f'$c = Get-ADComputer -Filter "Name -eq {ps_quote(name)}"; '
              f'if ($c) {{ Remove-ADObject -Identity $c.DistinguishedName -Recursive -Confirm:$false }}; '
              f'exit 0')
    _, stderr, rc = run_remote_powershell(server, script, username, password)
    if rc != 0:
        write_output(f'Remove-ADObject for {name} on {server} returned {rc}: {stderr.strip()}')
        return False
    write_output(f'Removed AD computer object {name} via {server}')
    return True

#==============================================================================
# VSPHERE OPERATIONS
#==============================================================================

def connect_vc(host, user, password=None, **kwargs):
    """
    Connect to a vCenter

    :param host: vCenter hostname
    :param user: Username
    :param password: Password
    :return: ServiceInstance on success, None on failure
    """
    if password is None:
        password = get_password('vcenter')

    port = kwargs.get('port', 443)

    try:
        si = connect.SmartConnect(
            host=host,
            user=user,
            pwd=password,
            port=port,
            disableSslCertValidation=not verify_ssl
        )
        sisvc[host] = si
        sis.append(si)
        write_output(f'Connected to {host}')
        return si
    except Exception as e:
        write_output(f'Failed to connect to {host}: {e}')
        return None


def disconnect_vcenters():
    """Disconnect all vCenter sessions"""
    for si in sis:
        try:
            connect.Disconnect(si)
        except Exception as e:
            logging.debug(f'Disconnect failed: {e}')
    sis.clear()
    sisvc.clear()


def get_all_objs(si_content, vimtype):
    """
    Method that populates objects of type vimtype such as
    vim.VirtualMachine, vim.HostSystem, vim.Datacenter, vim.Datastore, vim.ClusterComputeResource
    :param si_content: serviceinstance.content
    :param vimtype: VIM object type name (list)
    :return: dict of {object: name}
    """
    obj = {}
    container = si_content.viewManager.CreateContainerView(si_content.rootFolder, vimtype, True)
    for managed_object_ref in container.view:
        obj.update({managed_object_ref: managed_object_ref.name})
    container.Destroy()
    return obj


def find_obj(si, vimtype, name):
    """
    Find the first managed object of a type by name

    :param si: ServiceInstance
    :param vimtype: list of VIM types
    :param name: Object name
    :return: managed object or None
    """
    if not name:
        return None
    for obj, obj_name in get_all_objs(si.content, vimtype).items():
        if obj_name == name:
            return obj
    return None


def get_vm(si, name):
    """Get a VM (or template) by name"""
    return find_obj(si, [vim.VirtualMachine], name)


def get_cluster(si, name):
    """Get a cluster by name"""
    return find_obj(si, [vim.ClusterComputeResource], name)


def get_datastore(si, name):
    """Get a datastore by name"""
    return find_obj(si, [vim.Datastore], name)


def get_datastore_cluster(si, name):
    """Get a datastore cluster (StoragePod) by name"""
    return find_obj(si, [vim.StoragePod], name)


def get_network(si, name):
    """Get a standard or distributed port group by name"""
    return find_obj(si, [vim.Network], name)


def get_datacenter(obj):
    """Walk up the inventory from obj to its datacenter"""
    while obj is not None and not isinstance(obj, vim.Datacenter):
        obj = getattr(obj, 'parent', None)
    return obj


def get_folder(si, path, anchor=None):
    """
    Resolve a VM folder by slash-separated path under the datacenter vmFolder,
    falling back to a plain name match anywhere in the inventory.

    :param si: ServiceInstance
    :param path: Folder path such as 'Prod/Web', or empty for the root VM folder
    :param anchor: Any inventory object in the target datacenter (e.g. the cluster)
    :return: vim.Folder or None
    """
    datacenter = get_datacenter(anchor) if anchor is not None else None
    if datacenter is None:
        datacenters = list(get_all_objs(si.content, [vim.Datacenter]).keys())
        datacenter = datacenters[0] if datacenters else None

    if not path:
        return datacenter.vmFolder if datacenter else None

    if datacenter is not None:
        folder = datacenter.vmFolder
        for part in [p for p in path.strip('/').split('/') if p]:
            folder = next((child for child in folder.childEntity
                           if isinstance(child, vim.Folder) and child.name == part), None)
            if folder is None:
                break
        if folder is not None:
            return folder

    return find_obj(si, [vim.Folder], path.strip('/').split('/')[-1])


def pick_datastore(pod):
    """
    Pick the datastore with the most free space from a datastore cluster

    :param pod: vim.StoragePod
    :return: vim.Datastore or None
    """
    candidates = [ds for ds in pod.childEntity
                  if isinstance(ds, vim.Datastore) and ds.summary.accessible
                  and not getattr(ds.summary, 'maintenanceMode', 'normal') == 'inMaintenance']
    if not candidates:
        return None
    return max(candidates, key=lambda ds: ds.summary.freeSpace)


def resolve_datastore(si, datastore=None, datastore_cluster=None):
    """
    Resolve the configured datastore, or pick one from the configured datastore cluster

    :return: vim.Datastore or None
    """
    if datastore:
        return get_datastore(si, datastore)
    if datastore_cluster:
        pod = get_datastore_cluster(si, datastore_cluster)
        if pod is None:
            write_output(f'Datastore cluster {datastore_cluster} not found')
            return None
        return pick_datastore(pod)
    return None


def wait_task(task, timeout=3600, description=None):
    """
    Wait for a vSphere task to finish

    :param task: vim.Task
    :param timeout: Seconds before giving up, checked on each progress update
    :param description: Text used in errors (default the task description id)
    :return: task.info.result
    :raises RuntimeError: If the task fails or times out
    """
    description = description or getattr(task.info, 'descriptionId', 'task')
    deadline = time.time() + timeout

    def check_deadline(task, progress):
        if time.time() > deadline:
            raise RuntimeError(f'{description} did not complete within {timeout} seconds')

    try:
        WaitForTask(task, onProgressUpdate=check_deadline)
    except vmodl.MethodFault as e:
        message = getattr(e, 'msg', None) or str(e)
        raise RuntimeError(f'{description} failed: {message}') from e
    return task.info.result


def start_vm(vm):
    """Power on a VM"""
    if vm.runtime.powerState != vim.VirtualMachinePowerState.poweredOn:
        try:
            wait_task(vm.PowerOnVM_Task(), description=f'Power on {vm.name}')
            write_output(f'Powered on VM: {vm.name}')
            return True
        except Exception as e:
            write_output(f'Failed to power on {vm.name}: {e}')
            return False
    write_output(f'{vm.name} already powered on.')
    return True


def stop_vm(vm, timeout=300):
    """
    Shut a VM down, guest first and hard power-off if it is still running after timeout

    :param vm: VM object
    :param timeout: Seconds to wait for the guest shutdown
    :return: True once the VM is powered off
    """
    if vm.runtime.powerState == vim.VirtualMachinePowerState.poweredOff:
        write_output(f'{vm.name} already powered off.')
        return True

    if vm.guest.toolsRunningStatus == 'guestToolsRunning':
        try:
            write_output(f'Shutting down guest on {vm.name}...')
            vm.ShutdownGuest()
            if poll_until(lambda: vm.runtime.powerState == vim.VirtualMachinePowerState.poweredOff,
                          timeout, description=f'{vm.name} guest shutdown'):
                write_output(f'{vm.name} shut down cleanly')
                return True
        except Exception as e:
            write_output(f'Guest shutdown of {vm.name} failed: {e}')

    try:
        wait_task(vm.PowerOffVM_Task(), description=f'Power off {vm.name}')
        write_output(f'Powered off VM: {vm.name}')
        return True
    except Exception as e:
        write_output(f'Failed to power off {vm.name}: {e}')
        return False


def tools_running(vm):
    """True when VMware Tools reports running in the guest"""
    return vm.guest.toolsRunningStatus == 'guestToolsRunning'


def wait_for_tools(vm, timeout=600, interval=None):
    """
    Wait for VMware Tools to report running

    :param vm: VM object
    :param timeout: Seconds to wait
    :return: True if tools came up
    """
    write_output(f'Waiting up to {timeout}s for VMware Tools on {vm.name}...')
    return poll_until(lambda: tools_running(vm), timeout, interval, description=f'VMware Tools on {vm.name}')


def get_network_adapter(vm_obj):
    """
    Return a list of network adapters for the VM
    :param vm_obj: the VM to use
    :return: list of VirtualEthernetCard devices
    """
    return [dev for dev in vm_obj.config.hardware.device
            if isinstance(dev, vim.vm.device.VirtualEthernetCard)]


def set_network_adapter_connection(vm_obj, adapter, connected):
    """
    Connect or disconnect a VM network adapter
    :param vm_obj: the VM object
    :param adapter: the VM virtual network adapter
    :param connected: True or False the desired connection state
    :return: True on success
    """
    adapter_spec = vim.vm.device.VirtualDeviceSpec()
    adapter_spec.operation = vim.vm.device.VirtualDeviceSpec.Operation.edit
    adapter_spec.device = adapter
    connectable = vim.vm.device.VirtualDevice.ConnectInfo()
    connectable.connected = connected
    connectable.startConnected = connected
    connectable.allowGuestControl = True
    adapter_spec.device.connectable = connectable
    spec = vim.vm.ConfigSpec(deviceChange=[adapter_spec])
    try:
        wait_task(vm_obj.ReconfigVM_Task(spec=spec), description=f'Reconfigure {adapter.deviceInfo.label}')
        state = 'Connected' if connected else 'Disconnected'
        write_output(f'{state} {adapter.deviceInfo.label} on {vm_obj.name}')
        return True
    except Exception as e:
        write_output(f'Could not change {adapter.deviceInfo.label} on {vm_obj.name}: {e}')
        return False


def set_annotation(vm, text):
    """Replace the VM notes field"""
    wait_task(vm.ReconfigVM_Task(spec=vim.vm.ConfigSpec(annotation=text)),
              description=f'Annotate {vm.name}')

#==============================================================================
# GUEST OPERATIONS
#==============================================================================

def run_in_guest(si, vm, username, password, program, arguments='', env=None):
    """
    Start a program inside the guest through VMware Tools

    :param si: ServiceInstance
    :param vm: VM object (tools must be running)
    :param username: Guest account
    :param password: Guest password
    :param program: Full path of the program in the guest
    :param arguments: Command line arguments
    :param env: Dict of environment variables for the process
    :return: Guest process id
    """
    auth = vim.vm.guest.NamePasswordAuthentication(username=username, password=password)
    spec = vim.vm.guest.ProcessManager.ProgramSpec(programPath=program, arguments=arguments)
    if env:
        spec.envVariables = [f'{key}={value}' for key, value in env.items()]
    pm = si.content.guestOperationsManager.processManager
    return pm.StartProgramInGuest(vm, auth, spec)


def wait_for_guest_process(si, vm, username, password, pid, timeout=300, interval=5):
    """
    Wait for a guest process to exit

    :return: exit code, or None if it was still running at the timeout
    """
    auth = vim.vm.guest.NamePasswordAuthentication(username=username, password=password)
    pm = si.content.guestOperationsManager.processManager
    result = {}

    def finished():
        procs = pm.ListProcessesInGuest(vm, auth, [pid])
        if procs and procs[0].endTime is not None:
            result['exit_code'] = procs[0].exitCode
            return True
        return False

    if poll_until(finished, timeout, interval, description=f'guest process {pid} on {vm.name}'):
        return result['exit_code']
    return None


def run_guest_powershell(si, vm, username, password, script, timeout=300, env=None):
    """
    Run a PowerShell script inside a Windows guest and wait for it

    Secrets belong in env rather than the script, which is visible in the guest process list

    :return: exit code, or None on timeout
    """
    pid = run_in_guest(si, vm, username, password, POWERSHELL,
                       f'-NoProfile -NonInteractive -EncodedCommand {encode_powershell(script)}',
                       env=env)
    write_output(f'Started guest PowerShell on {vm.name} (pid {pid})')
    return wait_for_guest_process(si, vm, username, password, pid, timeout=timeout)
