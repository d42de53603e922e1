import os, pdb, logging, tempfile
import unittest as test
from unittest import mock

from nistoar.pln import transfer
from nistoar.pln.client import PLNClient, Result
from nistoar.pln.model import Deposit, ISSUE
from nistoar.pln.settings import InMemorySettingsStore
from nistoar.pln.storage import DepositStorage

tmpdir = tempfile.TemporaryDirectory(prefix="_test_transfer.")
loghdlr = None
rootlog = None
def setUpModule():
    global loghdlr
    global rootlog
    rootlog = logging.getLogger()
    loghdlr = logging.FileHandler(os.path.join(tmpdir.name,"test_transfer.log"))
    loghdlr.setLevel(logging.DEBUG)
    loghdlr.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    rootlog.addHandler(loghdlr)

def tearDownModule():
    global loghdlr
    if loghdlr:
        if rootlog:
            rootlog.removeHandler(loghdlr)
            loghdlr.flush()
            loghdlr.close()
        loghdlr = None
    tmpdir.cleanup()

def state_doc(processing, lockss=""):
    return ("""<?xml version="1.0" encoding="utf-8"?>
<entry xmlns="http://www.w3.org/2005/Atom" xmlns:sword="http://purl.org/net/sword/terms/">
  <category scheme="http://purl.org/net/sword/terms/state" term="%s" label="Processing State"/>
  <category scheme="http://lockss.org/lockssomatic/terms/state" term="%s" label="LOCKSS State"/>
</entry>
""" % (processing, lockss)).encode("utf-8")

class TestParseStateDocument(test.TestCase):

    def test_parse(self):
        self.assertEqual(transfer.parse_state_document(state_doc("harvested", "inProgress")),
                         ("harvested", "inProgress"))
        self.assertEqual(transfer.parse_state_document(state_doc("deposited")), ("deposited", ""))
        self.assertEqual(transfer.parse_state_document(b"<entry/>"), ("", ""))
        with self.assertRaises(ValueError):
            transfer.parse_state_document(b"<entry>")

class TestDepositTransferClient(test.TestCase):

    def setUp(self):
        self.workdir = tempfile.TemporaryDirectory(prefix="xfer.", dir=tmpdir.name)
        self.storage = DepositStorage(self.workdir.name)
        self.settings = InMemorySettingsStore()
        self.cli = PLNClient("https://pln.example.org")
        self.xfer = transfer.DepositTransferClient(self.cli, self.settings, self.storage,
                                                   log=rootlog.getChild("transfer"))
        self.tuuid = self.settings.for_tenant(1).tenant_uuid

        self.dep = Deposit(1, ISSUE, id=1)
        self.dep.set_packaged()
        os.makedirs(self.storage.deposit_dir(self.dep))
        with open(self.storage.atom_path(self.dep), 'w') as fd:
            fd.write("<entry/>")
        with open(self.storage.package_path(self.dep), 'w') as fd:
            fd.write("zip")

    def tearDown(self):
        self.workdir.cleanup()

    def test_transfer_new(self):
        with mock.patch.object(self.cli, "get", return_value=Result(404, b"", "Not Found")) as get, \
             mock.patch.object(self.cli, "post_file", return_value=Result(201, b"", None)) as post, \
             mock.patch.object(self.cli, "put_file") as put:
            self.assertTrue(self.xfer.transfer(self.dep))
            get.assert_called_once_with(self.cli.state_url(self.tuuid, self.dep.uuid))
            post.assert_called_once_with(self.cli.collection_url(self.tuuid),
                                         self.storage.atom_path(self.dep))
            put.assert_not_called()

        self.assertTrue(self.dep.transferred)
        self.assertIsNone(self.dep.export_error)

    def test_transfer_existing(self):
        with mock.patch.object(self.cli, "get", return_value=Result(200, state_doc("hold"), None)), \
             mock.patch.object(self.cli, "post_file") as post, \
             mock.patch.object(self.cli, "put_file", return_value=Result(200, b"", None)) as put:
            self.assertTrue(self.xfer.transfer(self.dep))
            put.assert_called_once_with(self.cli.edit_url(self.tuuid, self.dep.uuid),
                                        self.storage.atom_path(self.dep))
            post.assert_not_called()
        self.assertTrue(self.dep.transferred)

    def test_transfer_idempotent(self):
        # a repeated transfer after a lost confirmation updates rather than duplicates
        with mock.patch.object(self.cli, "get", return_value=Result(404, b"", "Not Found")), \
             mock.patch.object(self.cli, "post_file", return_value=Result(None, None, "timed out")):
            self.assertFalse(self.xfer.transfer(self.dep))
        self.assertFalse(self.dep.transferred)
        self.assertTrue(self.dep.packaged)
        self.assertIn("timed out", self.dep.export_error)
        self.assertIsNotNone(self.dep.status_date)

        with mock.patch.object(self.cli, "get", return_value=Result(200, state_doc(""), None)), \
             mock.patch.object(self.cli, "post_file") as post, \
             mock.patch.object(self.cli, "put_file", return_value=Result(200, b"", None)) as put:
            self.assertTrue(self.xfer.transfer(self.dep))
            post.assert_not_called()
            self.assertEqual(put.call_count, 1)
        self.assertTrue(self.dep.transferred)
        self.assertIsNone(self.dep.export_error)

    def test_transfer_server_error(self):
        with mock.patch.object(self.cli, "get", return_value=Result(503, b"", "503 Unavailable")), \
             mock.patch.object(self.cli, "post_file") as post, \
             mock.patch.object(self.cli, "put_file") as put:
            self.assertFalse(self.xfer.transfer(self.dep))
            post.assert_not_called()
            put.assert_not_called()
        self.assertFalse(self.dep.transferred)
        self.assertIn("503", self.dep.export_error)

    def test_transfer_rejected(self):
        with mock.patch.object(self.cli, "get", return_value=Result(404, b"", "Not Found")), \
             mock.patch.object(self.cli, "post_file",
                               return_value=Result(412, b"", "Package too large")):
            self.assertFalse(self.xfer.transfer(self.dep))
        self.assertIn("Package too large", self.dep.export_error)
        self.assertTrue(self.dep.ready_to_transfer)

    def test_transfer_missing_atom(self):
        os.remove(self.storage.atom_path(self.dep))
        with mock.patch.object(self.cli, "get") as get:
            self.assertFalse(self.xfer.transfer(self.dep))
            get.assert_not_called()
        self.assertTrue(self.dep.new)

    def _transferred(self):
        self.dep.set_transferred()
        return self.dep

    def test_poll(self):
        self._transferred()
        with mock.patch.object(self.cli, "get",
                               return_value=Result(200, state_doc("harvested"), None)) as get:
            self.assertTrue(self.xfer.poll_status(self.dep))
            get.assert_called_once_with(self.cli.state_url(self.tuuid, self.dep.uuid))
        self.assertTrue(self.dep.received)
        self.assertEqual(self.dep.staging_state, "harvested")

        # once received, the local package is no longer needed
        self.assertFalse(os.path.exists(self.storage.deposit_dir(self.dep)))

        with mock.patch.object(self.cli, "get",
                               return_value=Result(200, state_doc("deposited", "agreement"), None)):
            self.assertTrue(self.xfer.poll_status(self.dep))
        self.assertTrue(self.dep.lockss_agreement)
        self.assertFalse(self.dep.ready_for_remote_update)

    def test_poll_monotonic(self):
        self._transferred()
        prev = int(self.dep.status)
        for token in ["depositedByJournal", "harvested", "xml-validated", "reserialized",
                      "deposited"]:
            with mock.patch.object(self.cli, "get", return_value=Result(200, state_doc(token), None)):
                self.xfer.poll_status(self.dep)
            cur = int(self.dep.status)
            self.assertEqual(cur & prev, prev, token)
            prev = cur

    def test_poll_error_state(self):
        self._transferred()
        with mock.patch.object(self.cli, "get",
                               return_value=Result(200, state_doc("harvest-error"), None)):
            self.assertFalse(self.xfer.poll_status(self.dep))
        self.assertTrue(self.dep.transferred)
        self.assertFalse(self.dep.received)
        self.assertIn("unable to retrieve", self.dep.export_error)
        self.assertTrue(self.storage.atom_exists(self.dep))

    def test_poll_unknown_deposit(self):
        self._transferred()
        with mock.patch.object(self.cli, "get", return_value=Result(404, b"", "Not Found")):
            self.assertFalse(self.xfer.poll_status(self.dep))
        self.assertTrue(self.dep.new)
        self.assertIsNotNone(self.dep.status_date)

    def test_poll_server_error(self):
        self._transferred()
        status = self.dep.status
        with mock.patch.object(self.cli, "get", return_value=Result(500, b"", "500 Oops")):
            self.assertFalse(self.xfer.poll_status(self.dep))
        self.assertEqual(self.dep.status, status)
        self.assertIsNotNone(self.dep.status_date)

    def test_poll_missing_package(self):
        self._transferred()
        self.storage.remove(self.dep)
        with mock.patch.object(self.cli, "get",
                               return_value=Result(200, state_doc("depositedByJournal"), None)):
            self.assertFalse(self.xfer.poll_status(self.dep))
        self.assertTrue(self.dep.new)
        self.assertIsNotNone(self.dep.status_date)


if __name__ == '__main__':
    test.main()
