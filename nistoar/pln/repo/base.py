"""
The abstract interface for persisting Deposit and DepositObject records.

Records are kept in named collections by a :py:class:`RecordStore`, which only needs to know how
to read, write, list, and delete plain dictionaries.  The :py:class:`DepositRepository` and
:py:class:`DepositObjectRepository` classes build the filtered selections that the deposit
system needs on top of a store.
"""
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, MutableMapping
from typing import Iterator, Callable, Union, List

from .. import PLNException
from ..model import Deposit, DepositObject, now
from .. import status as sts

DEPOSITS_COLL = "deposits"
OBJECTS_COLL = "objects"

__all__ = ["RecordStore", "DepositRepository", "DepositObjectRepository", "RepositoryException",
           "ObjectNotFound", "DEPOSITS_COLL", "OBJECTS_COLL"]

class RepositoryException(PLNException):
    """
    an exception indicating a failure reading or writing records
    """
    pass

class ObjectNotFound(RepositoryException):
    """
    an exception indicating that a requested record does not exist
    """
    def __init__(self, coll, id, message=None, sys=None):
        if not message:
            message = "%s: record not found: %s" % (coll, str(id))
        super(ObjectNotFound, self).__init__(message, sys=sys)
        self.record_id = id

class RecordStore(ABC):
    """
    an abstract store of records, organized into collections and identified by integers
    """

    @abstractmethod
    def _get_from_coll(self, collname, id) -> MutableMapping:
        """
        return the record with the given identifier from the named collection or None if it
        does not exist
        """
        raise NotImplementedError()

    @abstractmethod
    def _select_from_coll(self, collname) -> Iterator[MutableMapping]:
        """
        iterate through all of the records in the named collection
        """
        raise NotImplementedError()

    @abstractmethod
    def _upsert(self, collname, recdata: Mapping) -> bool:
        """
        insert or replace a record, returning True if the record was newly inserted
        """
        raise NotImplementedError()

    @abstractmethod
    def _delete_from(self, collname, id) -> bool:
        """
        delete a record, returning False if it did not exist
        """
        raise NotImplementedError()

    @abstractmethod
    def _next_recnum(self, collname) -> int:
        """
        reserve and return the next available record number for the named collection
        """
        raise NotImplementedError()

class _Repository(object):
    _coll = None
    _reccls = None

    def __init__(self, store: RecordStore):
        self._store = store

    def find(self, predicate: Callable=None) -> Iterator:
        """
        iterate through the records that match the given predicate, ordered by identifier

        :param predicate:  a function that takes a record and returns True if it should be
                           included; if None, all records are returned.
        """
        recs = [self._reccls.from_dict(d) for d in self._store._select_from_coll(self._coll)]
        recs.sort(key=lambda r: r.id)
        for rec in recs:
            if predicate is None or predicate(rec):
                yield rec

    def get(self, id):
        """
        return the record with the given identifier
        :raise ObjectNotFound:  if the record does not exist
        """
        data = self._store._get_from_coll(self._coll, id)
        if data is None:
            raise ObjectNotFound(self._coll, id)
        return self._reccls.from_dict(data)

    def exists(self, id) -> bool:
        return id is not None and self._store._get_from_coll(self._coll, id) is not None

    def add(self, rec):
        """
        save a new record, assigning it an identifier
        :return:  the record's new identifier
        """
        rec.id = self._store._next_recnum(self._coll)
        rec.created = now()
        rec.modified = rec.modified or rec.created
        self._store._upsert(self._coll, rec.to_dict())
        return rec.id

    def edit(self, rec):
        """
        save the updated contents of an existing record
        :raise ObjectNotFound:  if the record was never added
        """
        if not self.exists(rec.id):
            raise ObjectNotFound(self._coll, rec.id)
        self._store._upsert(self._coll, rec.to_dict())

    def delete(self, rec) -> bool:
        """
        delete a record.
        :param rec:  the record to delete or its identifier
        :return:  False if the record did not exist
        """
        id = getattr(rec, 'id', rec)
        return self._store._delete_from(self._coll, id)

    def find_by_tenant(self, tenant_id) -> Iterator:
        return self.find(lambda r: r.tenant_id == tenant_id)

class DepositRepository(_Repository):
    """
    the repository of :py:class:`~nistoar.pln.model.Deposit` records
    """
    _coll = DEPOSITS_COLL
    _reccls = Deposit

    def edit(self, rec):
        rec.touch()
        super(DepositRepository, self).edit(rec)

    def get_by_uuid(self, uuid, tenant_id=None) -> Deposit:
        """
        return the deposit with the given UUID or None if it does not exist.
        :param tenant_id:  if provided, the deposit must also belong to this tenant
        """
        for dep in self.find(lambda d: d.uuid == uuid):
            if tenant_id is None or dep.tenant_id == tenant_id:
                return dep
        return None

    def find_by_status(self, tenant_id, status_filter: Union[str, Callable]) -> Iterator[Deposit]:
        """
        iterate through a tenant's deposits whose status satisfies a filter.

        :param status_filter:  either the name of one of the filters in
                               :py:data:`nistoar.pln.status.filters` or a function that takes a
                               DepositStatus and returns a bool.
        """
        if isinstance(status_filter, str):
            if status_filter not in sts.filters:
                raise ValueError("Unrecognized status filter: "+status_filter)
            status_filter = sts.filters[status_filter]
        return self.find(lambda d: d.tenant_id == tenant_id and status_filter(d.status))

    def ready_to_package(self, tenant_id) -> Iterator[Deposit]:
        return self.find_by_status(tenant_id, sts.STATUS_READY_TO_PACKAGE)

    def ready_to_transfer(self, tenant_id) -> Iterator[Deposit]:
        return self.find_by_status(tenant_id, sts.STATUS_READY_TO_TRANSFER)

    def ready_for_update(self, tenant_id) -> Iterator[Deposit]:
        return self.find_by_status(tenant_id, sts.STATUS_READY_FOR_UPDATE)

    def order_by_error(self, deposits, errors_first=True) -> List[Deposit]:
        """
        return the given deposits sorted so that those with recorded errors come first (or last)
        """
        return sorted(deposits, key=lambda d: (bool(d.export_error) != errors_first, d.id))

    def prune_orphaned(self, tenant_exists: Callable) -> List[Deposit]:
        """
        delete the deposits whose tenant no longer exists.

        :param tenant_exists:  a function that returns True if a given tenant identifier exists
        :return:  the deleted deposits (so that their artifacts can be removed)
        """
        out = []
        for dep in list(self.find(lambda d: not tenant_exists(d.tenant_id))):
            if self.delete(dep):
                out.append(dep)
        return out

class DepositObjectRepository(_Repository):
    """
    the repository of :py:class:`~nistoar.pln.model.DepositObject` records
    """
    _coll = OBJECTS_COLL
    _reccls = DepositObject

    def find_by_tenant(self, tenant_id, kind=None) -> Iterator[DepositObject]:
        return self.find(lambda o: o.tenant_id == tenant_id and (kind is None or o.kind == kind))

    def get_by_content(self, tenant_id, kind, content_id) -> DepositObject:
        """
        return the object linked to the given content item or None if it does not exist
        """
        for obj in self.find(lambda o: o.tenant_id == tenant_id and o.kind == kind and
                                       o.content_id == content_id):
            return obj
        return None

    def find_by_deposit(self, deposit_id) -> Iterator[DepositObject]:
        return self.find(lambda o: deposit_id is not None and o.deposit_id == deposit_id)

    def find_unbatched(self, tenant_id, kind) -> Iterator[DepositObject]:
        """
        iterate through the tenant's objects of the given kind not yet assigned to a deposit
        """
        return self.find(lambda o: o.tenant_id == tenant_id and o.kind == kind and
                                   o.deposit_id is None)

    def prune_orphaned(self, tenant_exists: Callable, deposits: DepositRepository) -> List[DepositObject]:
        """
        delete the objects whose tenant no longer exists or that reference a deposit that no
        longer exists or that belongs to a different tenant.  Objects not yet assigned to a
        deposit are retained.

        :return:  the deleted objects
        """
        def orphaned(obj):
            if not tenant_exists(obj.tenant_id):
                return True
            if obj.deposit_id is None:
                return False
            if not deposits.exists(obj.deposit_id):
                return True
            return deposits.get(obj.deposit_id).tenant_id != obj.tenant_id

        out = []
        for obj in list(self.find(orphaned)):
            if self.delete(obj):
                out.append(obj)
        return out
