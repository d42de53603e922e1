"""
Persistence of the records managed by the PLN deposit system.

The :py:func:`create_repositories` function creates the :py:class:`DepositRepository` and
:py:class:`DepositObjectRepository` that share a single record store selected via the
``repository`` configuration parameter (``type`` is ``inmem`` or ``fsbased``; the latter requires
``dir``).
"""
from collections.abc import Mapping

from .base import *
from .inmem import InMemoryRecordStore
from .fsbased import FSBasedRecordStore
from ..exceptions import ConfigurationException

def create_record_store(config: Mapping=None) -> RecordStore:
    """
    create a RecordStore according to the given ``repository`` configuration
    """
    if not config:
        config = {}
    rtype = config.get('type', 'inmem')
    if rtype == 'inmem':
        return InMemoryRecordStore()
    if rtype == 'fsbased':
        if not config.get('dir'):
            raise ConfigurationException("Missing required config parameter: repository.dir")
        return FSBasedRecordStore(config['dir'])
    raise ConfigurationException("Unsupported repository type: "+str(rtype))

def create_repositories(config: Mapping=None):
    """
    return a (DepositRepository, DepositObjectRepository) pair backed by the same record store
    """
    store = create_record_store(config)
    return DepositRepository(store), DepositObjectRepository(store)
