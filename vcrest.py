# vcrest.py - vmops vCenter REST API Session
# Version 1.0 - October 2026
# Author - Infrastructure Operations Team
# Content library and tagging calls through the vCenter /api endpoint

import logging
import requests
import urllib3

urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)


class VcRestError(RuntimeError):
    """A vCenter REST call returned an error status"""

    def __init__(self, method, path, status_code, detail=''):
        self.method = method
        self.path = path
        self.status_code = status_code
        self.detail = detail
        super().__init__(f'{method} {path} failed (HTTP {status_code}){": " + detail if detail else ""}')


class VcRestSession:
    """
    Session against the vCenter REST API.

    Authenticates with POST /api/session and sends the returned token in the
    vmware-api-session-id header. Usable as a context manager:

        with VcRestSession(host, user, password) as rest:
            library_id = rest.find_library('Templates')
    """

    def __init__(self, hostname: str, user: str, password: str, verify: bool = False, timeout: int = 60):
        self.hostname = hostname
        self.user = user
        self.password = password
        self.timeout = timeout
        self.base_url = f'https://{hostname}/api'
        self.session = requests.Session()
        self.session.verify = verify
        self.token = None
        self._tag_cache = {}
        self._category_cache = {}

    def __enter__(self):
        self.login()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.logout()
        return False

    #==========================================================================
    # SESSION
    #==========================================================================

    def login(self):
        """Get an API session token"""
        response = self.session.post(f'{self.base_url}/session', auth=(self.user, self.password),
                                     timeout=self.timeout)
        if response.status_code != 201:
            raise VcRestError('POST', '/session', response.status_code, _detail(response))

        self.token = response.json()
        self.session.headers.update({'vmware-api-session-id': self.token})
        return self.token

    def logout(self):
        """End the API session (best effort)"""
        if not self.token:
            return
        try:
            self.session.delete(f'{self.base_url}/session', timeout=10)
        except requests.exceptions.RequestException as e:
            logger.debug(f'Logout from {self.hostname} failed: {e}')
        self.token = None
        self.session.headers.pop('vmware-api-session-id', None)

    def request(self, method: str, path: str, **kwargs):
        """
        Send a request relative to /api

        :return: Decoded JSON body, or None for an empty body
        :raises VcRestError: On HTTP status >= 400
        """
        kwargs.setdefault('timeout', self.timeout)
        response = self.session.request(method, f'{self.base_url}{path}', **kwargs)
        if response.status_code >= 400:
            raise VcRestError(method, path, response.status_code, _detail(response))
        if not response.content:
            return None
        return response.json()

    def get(self, path, **kwargs):
        return self.request('GET', path, **kwargs)

    def post(self, path, **kwargs):
        return self.request('POST', path, **kwargs)

    def delete(self, path, **kwargs):
        return self.request('DELETE', path, **kwargs)

    #==========================================================================
    # CONTENT LIBRARY
    #==========================================================================

    def find_library(self, name):
        """
        Find a content library by name

        :return: library id or None
        """
        ids = self.post('/content/library', params={'action': 'find'}, json={'name': name}) or []
        return ids[0] if ids else None

    def find_library_item(self, library_id, name):
        """
        Find an item in a content library by name

        :return: item id or None
        """
        ids = self.post('/content/library/item', params={'action': 'find'},
                        json={'library_id': library_id, 'name': name}) or []
        return ids[0] if ids else None

    def get_library_item(self, item_id):
        """Return the library item model (name, type, size ...)"""
        return self.get(f'/content/library/item/{item_id}')

    def deploy_library_item(self, item_id, item_type, name, folder_id, resource_pool_id,
                            cluster_id=None, datastore_id=None):
        """
        Deploy a content library item as a new VM

        vm-template items go through /vcenter/vm-template, OVF items through
        /vcenter/ovf. The result is never powered on.

        :return: MoRef id of the new VM (e.g. vm-1234)
        """
        if item_type == 'vm-template':
            placement = {'folder': folder_id}
            if cluster_id:
                placement['cluster'] = cluster_id
            else:
                placement['resource_pool'] = resource_pool_id
            body = {'name': name, 'placement': placement, 'powered_on': False}
            if datastore_id:
                body['disk_storage'] = {'datastore': datastore_id}
                body['vm_home_storage'] = {'datastore': datastore_id}
            return self.post(f'/vcenter/vm-template/library-items/{item_id}',
                             params={'action': 'deploy'}, json=body)

        if item_type == 'ovf':
            deployment_spec = {'name': name, 'accept_all_EULA': True}
            if datastore_id:
                deployment_spec['default_datastore_id'] = datastore_id
            body = {
                'target': {'resource_pool_id': resource_pool_id, 'folder_id': folder_id},
                'deployment_spec': deployment_spec,
            }
            result = self.post(f'/vcenter/ovf/library-item/{item_id}',
                               params={'action': 'deploy'}, json=body) or {}
            if not result.get('succeeded'):
                errors = (result.get('error') or {}).get('errors') or []
                raise RuntimeError(f'OVF deploy of {name} failed: {errors or result}')
            return result.get('resource_id', {}).get('id')

        raise ValueError(f'Unsupported content library item type: {item_type}')

    #==========================================================================
    # TAGGING
    #==========================================================================

    def get_category(self, category_id):
        if category_id not in self._category_cache:
            self._category_cache[category_id] = self.get(f'/cis/tagging/category/{category_id}')
        return self._category_cache[category_id]

    def get_tag(self, tag_id):
        if tag_id not in self._tag_cache:
            self._tag_cache[tag_id] = self.get(f'/cis/tagging/tag/{tag_id}')
        return self._tag_cache[tag_id]

    def find_category(self, name):
        """
        Find a tag category by name (case-insensitive)

        :return: category id or None
        """
        for category_id in self.get('/cis/tagging/category') or []:
            if self.get_category(category_id).get('name', '').lower() == name.lower():
                return category_id
        return None

    def find_tag(self, category_id, name):
        """
        Find a tag by name within a category (case-insensitive)

        :return: tag id or None
        """
        tag_ids = self.post('/cis/tagging/tag', params={'action': 'list-tags-for-category'},
                            json={'category_id': category_id}) or []
        for tag_id in tag_ids:
            if self.get_tag(tag_id).get('name', '').lower() == name.lower():
                return tag_id
        return None

    def list_attached_tags(self, vm_id):
        """Tag ids attached to a VM (by MoRef id)"""
        return self.post('/cis/tagging/tag-association', params={'action': 'list-attached-tags'},
                         json={'object_id': _vm_object(vm_id)}) or []

    def attach_tag(self, tag_id, vm_id):
        self.post(f'/cis/tagging/tag-association/{tag_id}', params={'action': 'attach'},
                  json={'object_id': _vm_object(vm_id)})

    def detach_tag(self, tag_id, vm_id):
        self.post(f'/cis/tagging/tag-association/{tag_id}', params={'action': 'detach'},
                  json={'object_id': _vm_object(vm_id)})

    def tag_names(self, vm_id):
        """
        Attached tags of a VM as 'Category/Tag' strings, sorted

        :param vm_id: VM MoRef id
        :return: list of strings
        """
        names = []
        for tag_id in self.list_attached_tags(vm_id):
            tag = self.get_tag(tag_id)
            category = self.get_category(tag.get('category_id', ''))
            names.append(f'{category.get("name", "?")}/{tag.get("name", "?")}')
        return sorted(names)


def _vm_object(vm_id):
    return {'type': 'VirtualMachine', 'id': vm_id}


def _detail(response):
    """Best effort extraction of the error message from a REST error body"""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] if response.text else ''
    if isinstance(body, dict):
        messages = body.get('messages') or []
        if messages and isinstance(messages[0], dict):
            return messages[0].get('default_message', '')
        return body.get('error_type', '')
    return str(body)[:200]
