"""
The on-disk layout of deposit packages.

Each deposit gets its own directory, ``{working_dir}/{tenant_id}/{deposit_folder}/{uuid}``,
holding the serialized bag (``{uuid}.zip``) and the Atom metadata document (``{uuid}.xml``).
"""
import os
from collections.abc import Mapping

import filelock

from .config import DEF_DEPOSIT_FOLDER
from .exceptions import ConfigurationException
from .utils import rmtree

class DepositStorage(object):
    """
    a helper for locating and managing the files that make up deposit packages
    """

    def __init__(self, working_dir, deposit_folder=DEF_DEPOSIT_FOLDER):
        if not working_dir:
            raise ConfigurationException("Missing required config parameter: working_dir")
        self.working_dir = working_dir
        self.deposit_folder = deposit_folder or DEF_DEPOSIT_FOLDER

    @classmethod
    def from_config(cls, config: Mapping):
        return cls(config.get('working_dir'), config.get('deposit_folder'))

    def tenant_dir(self, tenant_id):
        return os.path.join(self.working_dir, str(tenant_id), self.deposit_folder)

    def deposit_dir(self, deposit):
        return os.path.join(self.tenant_dir(deposit.tenant_id), deposit.uuid)

    def package_path(self, deposit):
        """
        the path to the deposit's serialized bag
        """
        return os.path.join(self.deposit_dir(deposit), deposit.uuid + ".zip")

    def atom_path(self, deposit):
        """
        the path to the deposit's Atom metadata document
        """
        return os.path.join(self.deposit_dir(deposit), deposit.uuid + ".xml")

    def package_exists(self, deposit) -> bool:
        return os.path.isfile(self.package_path(deposit))

    def atom_exists(self, deposit) -> bool:
        return os.path.isfile(self.atom_path(deposit))

    def lock_for(self, deposit) -> filelock.FileLock:
        """
        return the lock that guards the deposit's directory while it is being (re)built
        """
        tdir = self.tenant_dir(deposit.tenant_id)
        if not os.path.exists(tdir):
            os.makedirs(tdir)
        return filelock.FileLock(self.deposit_dir(deposit) + ".lock")

    def remove(self, deposit) -> bool:
        """
        remove the deposit's directory and all of its contents
        :return:  True if the directory existed
        """
        ddir = self.deposit_dir(deposit)
        existed = os.path.exists(ddir)
        rmtree(ddir)
        lockfile = ddir + ".lock"
        if os.path.exists(lockfile):
            os.remove(lockfile)
        return existed
