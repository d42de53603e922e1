"""
Storage for the per-tenant settings of the PLN deposit system.

Settings are simple name-value pairs stored per tenant by a :py:class:`SettingsStore`.  The
:py:class:`PLNSettings` class provides a typed view of the settings that the deposit system uses
for a particular tenant, including the network's capabilities as last reported in its service
document and the tenant's agreement to the network's terms of use.
"""
import os, uuid
from abc import ABC, abstractmethod
from copy import deepcopy
from collections.abc import Mapping

from .utils import read_json, write_json
from .model import now, ISSUE, SUBMISSION
from .config import DEF_OBJECT_THRESHOLD
from .exceptions import ConfigurationException

class SettingsStore(ABC):
    """
    an interface to a store of per-tenant settings
    """

    @abstractmethod
    def get(self, tenant_id, name, default=None):
        """
        return the value of a tenant's setting, or the default if it is not set
        """
        raise NotImplementedError()

    @abstractmethod
    def set(self, tenant_id, name, value):
        """
        set the value of a tenant's setting
        """
        raise NotImplementedError()

    def for_tenant(self, tenant_id, config: Mapping=None):
        """
        return a :py:class:`PLNSettings` view of the settings for a given tenant
        """
        return PLNSettings(self, tenant_id, config)

class InMemorySettingsStore(SettingsStore):
    """
    a SettingsStore that keeps settings in memory; this is provided primarily for testing
    """

    def __init__(self, data: Mapping=None):
        self._data = {}
        if data:
            self._data = deepcopy(data)

    def get(self, tenant_id, name, default=None):
        return deepcopy(self._data.get(str(tenant_id), {}).get(name, default))

    def set(self, tenant_id, name, value):
        self._data.setdefault(str(tenant_id), {})[name] = deepcopy(value)

class FileSettingsStore(SettingsStore):
    """
    a SettingsStore that persists all settings to a single JSON file
    """

    def __init__(self, filepath):
        self._file = filepath
        parent = os.path.dirname(os.path.abspath(filepath))
        if not os.path.isdir(parent):
            raise ConfigurationException(filepath+": settings file's directory does not exist")

    def _read(self):
        if not os.path.exists(self._file):
            return {}
        return read_json(self._file)

    def get(self, tenant_id, name, default=None):
        return self._read().get(str(tenant_id), {}).get(name, default)

    def set(self, tenant_id, name, value):
        data = self._read()
        data.setdefault(str(tenant_id), {})[name] = value
        write_json(data, self._file)

def create_settings_store(config: Mapping=None):
    """
    create a SettingsStore according to the ``settings`` configuration
    """
    if not config:
        config = {}
    stype = config.get('type', 'inmem')
    if stype == 'inmem':
        return InMemorySettingsStore(config.get('data'))
    if stype == 'fsbased':
        if not config.get('file'):
            raise ConfigurationException("Missing required config parameter: settings.file")
        return FileSettingsStore(config['file'])
    raise ConfigurationException("Unsupported settings store type: "+str(stype))

class PLNSettings(object):
    """
    a view of the PLN settings for a particular tenant.  Values not explicitly set for the
    tenant fall back to the system configuration.
    """

    def __init__(self, store: SettingsStore, tenant_id, config: Mapping=None):
        self._store = store
        self.tenant_id = tenant_id
        if config is None:
            config = {}
        self.cfg = config

    def get(self, name, default=None):
        return self._store.get(self.tenant_id, name, default)

    def set(self, name, value):
        self._store.set(self.tenant_id, name, value)

    @property
    def enabled(self) -> bool:
        """
        True if preservation is enabled for this tenant
        """
        return bool(self.get('enabled', False))

    @enabled.setter
    def enabled(self, val):
        self.set('enabled', bool(val))

    @property
    def tenant_uuid(self) -> str:
        """
        the identifier the network uses for this tenant; it is generated on first use
        """
        out = self.get('tenant_uuid')
        if not out:
            out = str(uuid.uuid4())
            self.set('tenant_uuid', out)
        return out

    @property
    def object_type(self) -> str:
        out = self.get('object_type') or self.cfg.get('object_type', ISSUE)
        if out not in (ISSUE, SUBMISSION):
            raise ConfigurationException("Unsupported object type for tenant %s: %s" %
                                         (self.tenant_id, out))
        return out

    @property
    def object_threshold(self) -> int:
        return int(self.get('object_threshold') or
                   self.cfg.get('object_threshold', DEF_OBJECT_THRESHOLD))

    @property
    def checksum_type(self) -> str:
        return self.get('checksum_type') or self.cfg.get('checksum_type', 'SHA-1')

    @property
    def max_upload_size(self):
        return self.get('max_upload_size')

    @property
    def accepting(self) -> bool:
        return bool(self.get('pln_accepting', False))

    @property
    def accepting_message(self) -> str:
        return self.get('pln_accepting_message')

    @property
    def terms_of_use(self):
        """
        the network's terms of use as a dictionary mapping each term's key to a dictionary with
        ``term`` (the text) and ``updated`` (the date the term was last changed)
        """
        return self.get('terms_of_use') or {}

    @property
    def terms_of_use_agreement(self):
        """
        a dictionary mapping each term's key to the date the tenant agreed to it (or None)
        """
        return self.get('terms_of_use_agreement') or {}

    def update_terms(self, terms: Mapping) -> bool:
        """
        save the given terms of use.  If they differ from those currently saved, all prior
        agreements are cleared.
        :return:  True if the terms changed
        """
        if dict(terms) == dict(self.terms_of_use):
            return False
        self.set('terms_of_use', dict(terms))
        self.set('terms_of_use_agreement', {k: None for k in terms})
        return True

    def terms_agreed(self) -> bool:
        """
        return True if the tenant has agreed to all of the current terms of use (which is trivially
        the case when the network lists no terms)
        """
        terms = self.terms_of_use
        agreement = self.terms_of_use_agreement
        return all(agreement.get(k) for k in terms)

    def agree_to_terms(self, when=None):
        """
        record the tenant's agreement to all of the current terms of use
        """
        when = (when or now()).isoformat()
        self.set('terms_of_use_agreement', {k: when for k in self.terms_of_use})

    def update_capabilities(self, max_upload_size, checksum_type, accepting, message):
        """
        save the capabilities reported by the network's service document
        """
        self.set('max_upload_size', max_upload_size)
        self.set('checksum_type', checksum_type)
        self.set('pln_accepting', bool(accepting))
        self.set('pln_accepting_message', message)
