"""
An implementation of the record store based on a simple in-memory look-up.

This is provided primarily for testing purposes
"""
from copy import deepcopy
from collections.abc import Mapping, MutableMapping
from typing import Iterator
from . import base

class InMemoryRecordStore(base.RecordStore):
    """
    an in-memory RecordStore implementation
    """

    def __init__(self, dbdata: Mapping=None):
        """
        :param dict dbdata:  the initial data for the store.  (Note: internal knowledge of
                             the in-memory data structure required to use this input.)  If
                             not provided, an empty store is created.
        """
        self._db = {
            base.DEPOSITS_COLL: {},
            base.OBJECTS_COLL: {},
            "nextnum": {}
        }
        if dbdata:
            self._db.update(deepcopy(dbdata))

    def _next_recnum(self, collname):
        if collname not in self._db['nextnum']:
            self._db['nextnum'][collname] = 0
        self._db['nextnum'][collname] += 1
        return self._db['nextnum'][collname]

    def _get_from_coll(self, collname, id) -> MutableMapping:
        return deepcopy(self._db.get(collname, {}).get(id))

    def _select_from_coll(self, collname) -> Iterator[MutableMapping]:
        for rec in list(self._db.get(collname, {}).values()):
            yield deepcopy(rec)

    def _delete_from(self, collname, id):
        if collname in self._db and id in self._db[collname]:
            del self._db[collname][id]
            return True
        return False

    def _upsert(self, collname, recdata: Mapping) -> bool:
        if collname not in self._db:
            self._db[collname] = {}
        exists = recdata['id'] in self._db[collname]
        self._db[collname][recdata['id']] = deepcopy(recdata)
        return not exists
