"""
An implementation of the record store that persists data to files on disk:  each record is
saved as a JSON file named after its identifier within a directory named after its collection.
"""
import os
from pathlib import Path
from collections.abc import Mapping, MutableMapping
from typing import Iterator
from . import base

from ..utils import read_json, write_json
from ..exceptions import ConfigurationException

class FSBasedRecordStore(base.RecordStore):
    """
    an implementation of RecordStore in which the data is persisted to flat files on disk.
    """

    def __init__(self, dbroot: str):
        self._root = Path(dbroot)
        if not self._root.is_dir():
            raise ConfigurationException("FSBasedRecordStore: %s: does not exist as a directory" %
                                         dbroot)

    def _ensure_collection(self, collname):
        collpath = self._root / collname
        if not collpath.exists():
            os.mkdir(collpath)

    def _read_rec(self, collname, id):
        recpath = self._root / collname / (str(id)+".json")
        if not recpath.is_file():
            return None
        try:
            return read_json(str(recpath))
        except ValueError as ex:
            raise base.RepositoryException("%s: Unable to read record as JSON: %s" % (id, str(ex)))
        except IOError as ex:
            raise base.RepositoryException(str(recpath)+": file locking error: "+str(ex))

    def _write_rec(self, collname, id, data):
        self._ensure_collection(collname)
        recpath = self._root / collname / (str(id)+".json")
        exists = recpath.exists()
        try:
            write_json(data, str(recpath))
        except Exception as ex:
            raise base.RepositoryException("%s: Unable to write record: %s" % (id, str(ex)))
        return not exists

    def _next_recnum(self, collname):
        num = self._read_rec("nextnum", collname)
        if num is None:
            num = 0
        num += 1
        self._write_rec("nextnum", collname, num)
        return num

    def _get_from_coll(self, collname, id) -> MutableMapping:
        if id is None:
            return None
        return self._read_rec(collname, id)

    def _select_from_coll(self, collname) -> Iterator[MutableMapping]:
        collpath = self._root / collname
        if not collpath.is_dir():
            return
        for fn in os.listdir(collpath):
            if not fn.endswith(".json"):
                continue
            try:
                rec = read_json(os.path.join(collpath, fn))
            except ValueError:
                # skip over corrupted records
                continue
            yield rec

    def _delete_from(self, collname, id):
        recpath = self._root / collname / (str(id)+".json")
        if recpath.is_file():
            recpath.unlink()
            lockpath = Path(str(recpath)+".lock")
            if lockpath.exists():
                lockpath.unlink()
            return True
        return False

    def _upsert(self, collname, recdata: Mapping) -> bool:
        return self._write_rec(collname, recdata['id'], recdata)
