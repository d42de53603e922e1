"""
The transfer and polling client:  registers deposit packages with the network and reconciles
the local status of deposits with the state reported by the network.

Both operations are idempotent and safe to repeat:  a failure leaves the deposit in a state in
which the same operation will be attempted again on the next run.
"""
import logging
from collections.abc import Mapping

from lxml import etree

from . import system as _sys
from .client import PLNClient, Result
from .model import Deposit
from .settings import SettingsStore
from .storage import DepositStorage

def parse_state_document(body):
    """
    extract the processing and LOCKSS state tokens from a deposit's state document.  The states
    are given by the ``term`` attributes of the first and second ``category`` elements.

    :return:  a tuple of the (processing, lockss) tokens
    :raise ValueError:  if the document cannot be parsed
    """
    try:
        root = etree.fromstring(body)
    except etree.XMLSyntaxError as ex:
        raise ValueError("State document is not well-formed XML: "+str(ex))
    cats = root.xpath("//*[local-name()='category']")
    processing = cats[0].get("term", "") if len(cats) > 0 else ""
    lockss = cats[1].get("term", "") if len(cats) > 1 else ""
    return processing, lockss

class DepositTransferClient(object):
    """
    a client that transfers deposits to the network and polls for their status
    """

    def __init__(self, client: PLNClient, settings: SettingsStore, storage: DepositStorage,
                 config: Mapping=None, log: logging.Logger=None):
        if config is None:
            config = {}
        self.cfg = config
        self.client = client
        self.settings = settings
        self.storage = storage
        if not log:
            log = _sys.getSysLogger().getChild("transfer")
        self.log = log

    def _tenant_uuid(self, deposit):
        return self.settings.for_tenant(deposit.tenant_id, self.cfg).tenant_uuid

    @staticmethod
    def _failure_message(action, res: Result):
        if res.status:
            return "%s failed with HTTP status %s: %s" % (action, res.status, res.error)
        return "%s failed due to network error: %s" % (action, res.error)

    def transfer(self, deposit: Deposit) -> bool:
        """
        send the deposit's Atom document to the network, creating the remote deposit if it does
        not exist yet or updating it if it does.  If the Atom document is missing, the deposit is
        reset so that it will be repackaged.

        :return:  True if the deposit was successfully transferred
        """
        atomfile = self.storage.atom_path(deposit)
        if not self.storage.atom_exists(deposit):
            self.log.warning("Atom document for deposit %s is missing; resetting deposit",
                             deposit.uuid)
            deposit.reset_to_new()
            return False

        tuuid = self._tenant_uuid(deposit)
        res = self.client.get(self.client.state_url(tuuid, deposit.uuid))
        if res.status_class not in (2, 4):
            msg = self._failure_message("Checking for existing deposit", res)
            self.log.error("Deposit %s: %s", deposit.uuid, msg)
            deposit.record_error(msg)
            deposit.stamp_status()
            return False

        if res.status_class == 2:
            url = self.client.edit_url(tuuid, deposit.uuid)
            self.log.info("Updating deposit %s at %s", deposit.uuid, url)
            res = self.client.put_file(url, atomfile)
        else:
            url = self.client.collection_url(tuuid)
            self.log.info("Creating deposit %s at %s", deposit.uuid, url)
            res = self.client.post_file(url, atomfile)

        if res.ok:
            deposit.set_transferred()
            return True

        msg = self._failure_message("Deposit transfer", res)
        self.log.error("Deposit %s: %s", deposit.uuid, msg)
        deposit.record_error(msg)
        deposit.stamp_status()
        return False

    def poll_status(self, deposit: Deposit) -> bool:
        """
        retrieve the deposit's state from the network and update its status accordingly.  Once
        the network has received the package, the local copy is removed.  The status date is
        stamped whatever the outcome.

        :return:  True if the network's state was retrieved and understood
        """
        tuuid = self._tenant_uuid(deposit)
        res = self.client.get(self.client.state_url(tuuid, deposit.uuid))
        if not res.ok:
            msg = self._failure_message("Status request", res)
            if res.status_class == 4:
                self.log.warning("Deposit %s is unknown to the network (%s); resetting deposit",
                                 deposit.uuid, msg)
                deposit.reset_to_new()
            else:
                self.log.error("Deposit %s: %s", deposit.uuid, msg)
            deposit.stamp_status()
            return False

        try:
            processing, lockss = parse_state_document(res.body)
        except ValueError as ex:
            self.log.error("Deposit %s: %s", deposit.uuid, str(ex))
            deposit.record_error(str(ex))
            deposit.stamp_status()
            return False

        self.log.info("Deposit %s: processing state=%s, LOCKSS state=%s", deposit.uuid,
                      processing, lockss or "(none)")
        errors = deposit.apply_remote_state(processing, lockss)
        for err in errors:
            self.log.warning("Deposit %s: %s", deposit.uuid, err)

        if deposit.received:
            if self.storage.remove(deposit):
                self.log.info("Removed local package for received deposit %s", deposit.uuid)
        elif not self.storage.atom_exists(deposit):
            self.log.warning("Local package for deposit %s is missing; resetting deposit",
                             deposit.uuid)
            deposit.reset_to_new()
            deposit.stamp_status()
            return False

        return not errors
