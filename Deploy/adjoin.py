#!/usr/bin/env python3
# adjoin.py - vmops Deploy Active Directory Join Stage
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Join the guest to the domain in the configured OU through VMware guest operations

import os
import sys
import logging

# Add repository root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from opsfunctions import ps_quote

# Default logging level
logging.basicConfig(level=logging.WARNING)

#==============================================================================
# MODULE CONFIGURATION
#==============================================================================

MODULE_NAME = 'adjoin'
MODULE_DESCRIPTION = 'Join Active Directory'

JOIN_TIMEOUT = 300  # seconds for Add-Computer itself
# the join password reaches the guest process through this variable, never the command line
JOIN_PASSWORD_ENV = 'VMOPS_JOIN_PASSWORD'

#==============================================================================
# HELPERS
#==============================================================================

def domain_from_ou(ou: str) -> str:
    """
    Derive the DNS domain from the DC= components of an OU distinguished name

    OU=Servers,OU=USE1,DC=corp,DC=example,DC=com -> corp.example.com
    """
    parts = [p.strip() for p in ou.split(',')]
    return '.'.join(p[3:] for p in parts if p[:3].upper() == 'DC=')


def join_credentials(opf, ad_config):
    """
    Account used to join the domain and query the domain controller

    :return: tuple (username, password)
    """
    if ad_config.use_vcenter_creds:
        return opf.vcuser, opf.get_password('vcenter')
    return opf.aduser, opf.get_password('ad', prompt=True)


def join_script(domain, ou, username, server=''):
    """
    PowerShell run inside the guest; exits non-zero if Add-Computer throws

    The password is read from $env:VMOPS_JOIN_PASSWORD.
    """
    q = ps_quote
    lines = [
        "$ErrorActionPreference = 'Stop'",
        f'$pw = ConvertTo-SecureString $env:{JOIN_PASSWORD_ENV} -AsPlainText -Force',
        f'$cred = New-Object System.Management.Automation.PSCredential({q(username)}, $pw)',
        f'$params = @{{ DomainName = {q(domain)}; OUPath = {q(ou)}; Credential = $cred; Force = $true }}',
    ]
    if server:
        lines.append(f'$params.Server = {q(server)}')
    lines.append('try { Add-Computer @params; exit 0 } catch { Write-Error $_; exit 1 }')
    return '\n'.join(lines)


def joined(vm, domain) -> bool:
    """True when tools are running and the guest FQDN is in domain"""
    host_name = (vm.guest.hostName or '').lower()
    return (vm.guest.toolsRunningStatus == 'guestToolsRunning'
            and host_name.endswith('.' + domain.lower()))

#==============================================================================
# MAIN FUNCTION
#==============================================================================

def main(opf=None, ctx=None, dry_run=False):
    """
    Main entry point for the AD join stage

    :param opf: opsfunctions module (will be imported if None)
    :param ctx: DeployContext
    :param dry_run: Whether to skip actual changes
    :return: True on success or nothing to do, False if the join did not complete
    """
    if opf is None:
        import opsfunctions as opf

    opf.write_output(f'Starting {MODULE_NAME}: {MODULE_DESCRIPTION}')

    config = ctx.config
    ad = config.ad
    vm_name = config.vmware.vm_name

    if not config.ad_join_requested:
        opf.write_output('AD.TargetOU not set - skipping domain join')
        return True

    domain = ad.domain or domain_from_ou(ad.target_ou) or opf.addomain
    server = ad.server or opf.adserver
    if not domain:
        opf.write_output(f'Cannot work out the domain for OU {ad.target_ou}')
        return False

    vm = ctx.vm or opf.get_vm(ctx.si, vm_name)
    if vm is None:
        if dry_run:
            opf.write_output(f'Would join {vm_name} to {domain} in {ad.target_ou}')
            return True
        opf.write_output(f'VM {vm_name} not found')
        return False
    ctx.vm = vm

    if joined(vm, domain):
        opf.write_output(f'{vm_name} already reports {vm.guest.hostName} - skipping domain join')
        return True

    username, password = join_credentials(opf, ad)
    if not username or not password:
        opf.write_output('No AD credentials configured - cannot join the domain')
        return False

    if server:
        exists = opf.ad_computer_exists(server, vm_name, username, password)
        if exists:
            opf.write_output(f'Computer {vm_name} already exists in AD - joining with the pre-staged account')
        if exists is None:
            opf.write_output(f'Could not check AD for {vm_name} on {server} - attempting the join anyway')

    if dry_run:
        opf.write_output(f'Would join {vm_name} to {domain} in {ad.target_ou}')
        return True

    if not opf.tools_running(vm):
        opf.write_output(f'VMware Tools not running on {vm_name} - cannot run the join in the guest')
        return False

    guest_password = opf.get_password('guest')
    script = join_script(domain, ad.target_ou, username, server)
    try:
        rc = opf.run_guest_powershell(ctx.si, vm, opf.guestuser, guest_password, script, timeout=JOIN_TIMEOUT,
                                      env={JOIN_PASSWORD_ENV: password})
    except Exception as e:
        opf.write_output(f'Guest operation on {vm_name} failed: {e}')
        return False

    if rc is None:
        opf.write_output(f'Add-Computer on {vm_name} did not finish within {JOIN_TIMEOUT} seconds')
        return False
    if rc != 0:
        opf.write_output(f'Add-Computer on {vm_name} exited with {rc}')
        return False

    opf.write_output(f'{vm_name} joined {domain} - rebooting guest')
    vm.RebootGuest()
    opf.ops_sleep(opf.sleep_seconds)

    if not opf.poll_until(lambda: joined(vm, domain), ad.wait_for_seconds,
                          description=f'{vm_name} to return as a member of {domain}'):
        return False

    opf.write_output(f'{vm_name} is back as {vm.guest.hostName}')
    ctx.results['adjoin'] = domain
    return True


#==============================================================================
# STANDALONE EXECUTION
#==============================================================================

if __name__ == '__main__':
    import vmdeploy
    sys.exit(vmdeploy.main(sys.argv[1:] + ['--stage', MODULE_NAME]))
