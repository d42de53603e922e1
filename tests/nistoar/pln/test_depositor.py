import os, pdb, logging, tempfile
from datetime import datetime, timedelta, timezone
import unittest as test
from unittest import mock

from nistoar.pln import depositor as dpstr, notify, ConfigurationException, StateException
from nistoar.pln.client import PLNClient, Result
from nistoar.pln.content import InMemoryContentProvider
from nistoar.pln.model import Deposit, DepositObject, ISSUE, SUBMISSION
from nistoar.pln.repo import create_repositories
from nistoar.pln.serialize import has_archiver
from nistoar.pln.service import ServiceDocument
from nistoar.pln.settings import InMemorySettingsStore
from nistoar.pln.storage import DepositStorage

tmpdir = tempfile.TemporaryDirectory(prefix="_test_depositor.")
loghdlr = None
rootlog = None
def setUpModule():
    global loghdlr
    global rootlog
    rootlog = logging.getLogger()
    loghdlr = logging.FileHandler(os.path.join(tmpdir.name,"test_depositor.log"))
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

def sd_doc(accepting="Yes", terms=True):
    termsxml = "<pkp:terms_of_use/>"
    if terms:
        termsxml = """<pkp:terms_of_use>
    <pkp:jms_terms updated="2024-01-01T00:00:00+00:00">I agree to abide by the terms.</pkp:jms_terms>
  </pkp:terms_of_use>"""
    return ("""<?xml version="1.0" encoding="utf-8"?>
<service xmlns:sword="http://purl.org/net/sword/" xmlns:lom="http://lockssomatic.info/service-document"
         xmlns:pkp="http://pkp.sfu.ca/SWORD" xmlns="http://www.w3.org/2007/app">
  <sword:maxUploadSize>10240</sword:maxUploadSize>
  <lom:uploadChecksumType>SHA-1</lom:uploadChecksumType>
  <pkp:pln_accepting is_accepting="%s">Deposits are welcome</pkp:pln_accepting>
  %s
</service>
""" % (accepting, termsxml)).encode("utf-8")

def state_doc(processing, lockss=""):
    return ("""<entry xmlns="http://www.w3.org/2005/Atom">
  <category term="%s" label="Processing State"/>
  <category term="%s" label="LOCKSS State"/>
</entry>""" % (processing, lockss)).encode("utf-8")

def when(days):
    return datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(days=days)

class FakeNetwork(object):
    """
    a stand-in for the network's SWORD service
    """
    def __init__(self, cli):
        self.cli = cli
        self.sd = sd_doc()
        self.registered = set()
        self.states = {}
        self.state_requests = []

    def get(self, url, headers=None):
        if url == self.cli.service_document_url():
            return Result(200, self.sd, None)
        if url.endswith("/state"):
            duuid = url.split('/')[-2]
            self.state_requests.append(duuid)
            if duuid not in self.registered:
                return Result(404, b"", "404 Not Found")
            return Result(200, state_doc(*self.states.get(duuid, ("depositedByJournal", ""))), None)
        return Result(404, b"", "404 Not Found")

    def post_file(self, url, filepath):
        duuid = os.path.basename(filepath)[:-len(".xml")]
        self.registered.add(duuid)
        return Result(201, b"", None)

    def put_file(self, url, filepath):
        return Result(200, b"", None)

class TestRunReport(test.TestCase):

    def test_report(self):
        rep = dpstr.RunReport()
        self.assertTrue(rep.ok)
        rep.append(dpstr.StageResult(1, dpstr.STAGE_DISCOVER))
        rep.append(dpstr.StageResult(1, dpstr.STAGE_PACKAGE, False, 2, "oops"))
        rep.append(dpstr.StageResult(2, dpstr.STAGE_DISCOVER, True, 3))
        self.assertFalse(rep.ok)
        self.assertEqual(len(rep.failures), 1)
        self.assertEqual(rep.failures[0].error, "oops")
        self.assertEqual(len(rep.for_tenant(1)), 2)
        self.assertEqual(rep.stage(2, dpstr.STAGE_DISCOVER).processed, 3)
        self.assertIsNone(rep.stage(2, dpstr.STAGE_PACKAGE))

class TestDepositor(test.TestCase):

    def setUp(self):
        self.workdir = tempfile.TemporaryDirectory(prefix="dep.", dir=tmpdir.name)
        self.content = InMemoryContentProvider({
            "tenants": [
                {"id": 1, "path": "j1", "name": "Journal of Goob", "url": "https://ojs.example/j1",
                 "issn": "1234-5678"},
                {"id": 2, "path": "j2", "name": "Journal of Gurn", "url": "https://ojs.example/j2"}
            ],
            "items": [
                {"id": 10, "tenant_id": 1, "kind": ISSUE, "volume": 1, "number": 1,
                 "modified": when(1), "date_published": when(1)},
                {"id": 11, "tenant_id": 1, "kind": ISSUE, "volume": 1, "number": 2,
                 "modified": when(2), "date_published": when(2)},
                {"id": 12, "tenant_id": 1, "kind": ISSUE, "volume": 1, "number": 3,
                 "modified": when(3), "date_published": when(3)},
                {"id": 13, "tenant_id": 1, "kind": ISSUE, "published": False}
            ]
        })
        for i in range(12):
            self.content.add_item({"id": 100+i, "tenant_id": 1, "kind": SUBMISSION,
                                   "modified": when(i)})

        self.deposits, self.objects = create_repositories()
        self.settings = InMemorySettingsStore()
        self.notifier = notify.LogNotifier()
        self.cli = PLNClient("https://pln.example.org")
        self.storage = DepositStorage(self.workdir.name)
        self.cfg = {"working_dir": self.workdir.name, "app_version": "3.4.0"}
        self.dpstr = dpstr.Depositor(self.cfg, self.content, self.deposits, self.objects,
                                     self.settings, self.notifier, self.cli, self.storage,
                                     rootlog.getChild("depositor"))

        tset = self.settings.for_tenant(1, self.cfg)
        tset.enabled = True
        tset.update_terms(ServiceDocument.parse(sd_doc()).terms)
        tset.agree_to_terms()
        self.tenant = self.content.get_tenant(1)
        self.net = FakeNetwork(self.cli)

    def tearDown(self):
        self.workdir.cleanup()

    def test_ctor(self):
        self.assertEqual(self.dpstr.cfg['working_dir'], self.workdir.name)
        self.assertEqual(self.dpstr.cfg['deposit_folder'], "pln")
        self.assertIs(self.dpstr.client, self.cli)
        self.assertIs(self.dpstr.packager.storage, self.storage)
        self.assertIs(self.dpstr.transferer.client, self.cli)

    def test_from_config(self):
        cfg = {
            "working_dir": self.workdir.name,
            "network_url": "https://pln.example.org/",
            "content_provider": {
                "factory": "nistoar.pln.content:InMemoryContentProvider",
                "tenants": [{"id": 1, "path": "j1", "name": "Journal of Goob"}]
            }
        }
        dep = dpstr.Depositor.from_config(cfg)
        self.assertIsInstance(dep.content, InMemoryContentProvider)
        self.assertEqual([t.id for t in dep.content.tenants()], [1])
        self.assertEqual(dep.client.baseurl, "https://pln.example.org")
        self.assertIsInstance(dep.notifier, notify.LogNotifier)
        self.assertIs(dep.deposits._store, dep.objects._store)

        del cfg['content_provider']['factory']
        with self.assertRaises(ConfigurationException):
            dpstr.Depositor.from_config(cfg)
        del cfg['content_provider']
        with self.assertRaises(ConfigurationException):
            dpstr.Depositor.from_config(cfg)
        with self.assertRaises(ConfigurationException):
            dpstr.Depositor.from_config({"content_provider": {"factory": "a:b"}})

    def test_discover_new_content(self):
        self.assertEqual(self.dpstr.discover_new_content(self.tenant, ISSUE), 3)
        objs = list(self.objects.find_by_tenant(1, ISSUE))
        self.assertEqual([o.content_id for o in objs], [10, 11, 12])
        self.assertTrue(all(o.deposit_id is None for o in objs))
        self.assertEqual(objs[1].modified, when(2))

        self.assertEqual(self.dpstr.discover_new_content(self.tenant, ISSUE), 0)
        self.assertEqual(len(list(self.objects.find_by_tenant(1))), 3)

    def test_batch_issues(self):
        self.dpstr.discover_new_content(self.tenant, ISSUE)
        self.assertEqual(self.dpstr.batch_new_objects(self.tenant, ISSUE, 5), 3)
        deps = list(self.deposits.find_by_tenant(1))
        self.assertEqual(len(deps), 3)
        for dep in deps:
            self.assertTrue(dep.new)
            self.assertEqual(dep.object_kind, ISSUE)
            self.assertEqual(len(list(self.objects.find_by_deposit(dep.id))), 1)
        self.assertEqual(list(self.objects.find_unbatched(1, ISSUE)), [])

        self.assertEqual(self.dpstr.batch_new_objects(self.tenant, ISSUE, 5), 0)

    def test_batch_submissions(self):
        self.assertEqual(self.dpstr.discover_new_content(self.tenant, SUBMISSION), 12)
        self.assertEqual(self.dpstr.batch_new_objects(self.tenant, SUBMISSION, 5), 2)
        deps = list(self.deposits.find_by_tenant(1))
        self.assertEqual(len(deps), 2)
        self.assertEqual([len(list(self.objects.find_by_deposit(d.id))) for d in deps], [5, 5])
        self.assertEqual([d.object_kind for d in deps], [SUBMISSION, SUBMISSION])
        self.assertEqual(len(list(self.objects.find_unbatched(1, SUBMISSION))), 2)

        # the leftovers wait until a full batch is available
        self.assertEqual(self.dpstr.batch_new_objects(self.tenant, SUBMISSION, 5), 0)
        for i in range(3):
            self.content.add_item({"id": 200+i, "tenant_id": 1, "kind": SUBMISSION})
        self.dpstr.discover_new_content(self.tenant, SUBMISSION)
        self.assertEqual(self.dpstr.batch_new_objects(self.tenant, SUBMISSION, 5), 1)
        self.assertEqual(list(self.objects.find_unbatched(1, SUBMISSION)), [])

        with self.assertRaises(ConfigurationException):
            self.dpstr.batch_new_objects(self.tenant, SUBMISSION, 0)

    def test_flag_updated_content(self):
        self.dpstr.discover_new_content(self.tenant, ISSUE)
        self.dpstr.batch_new_objects(self.tenant, ISSUE, 5)
        deps = list(self.deposits.find_by_tenant(1))
        for dep in deps:
            dep.set_packaged()
            dep.set_transferred()
            self.deposits.edit(dep)
        self.assertEqual(self.dpstr.flag_updated_content(self.tenant, ISSUE), 0)

        self.content.update_item(1, ISSUE, 11, modified=when(30))
        self.assertEqual(self.dpstr.flag_updated_content(self.tenant, ISSUE), 1)
        obj = self.objects.get_by_content(1, ISSUE, 11)
        self.assertEqual(obj.modified, when(30))
        self.assertTrue(self.deposits.get(obj.deposit_id).new)
        others = [d for d in self.deposits.find_by_tenant(1) if d.id != obj.deposit_id]
        self.assertTrue(all(d.transferred for d in others))

        # the change is only acted on once
        self.assertEqual(self.dpstr.flag_updated_content(self.tenant, ISSUE), 0)

    def test_disabled_tenant(self):
        self.assertEqual(self.dpstr.process_tenant(self.content.get_tenant(2)), [])
        self.assertEqual(self.notifier.sent, [])

    @mock.patch('nistoar.pln.depositor.has_archiver', return_value=True)
    def test_missing_issn(self, ha):
        self.settings.for_tenant(2).enabled = True
        res = self.dpstr.process_tenant(self.content.get_tenant(2))
        self.assertEqual(len(res), 1)
        self.assertEqual(res[0].stage, dpstr.STAGE_PRECONDITIONS)
        self.assertFalse(res[0].success)
        self.assertEqual(self.notifier.sent, [(2, notify.ISSN_MISSING)])

    @mock.patch('nistoar.pln.depositor.has_archiver', return_value=False)
    def test_missing_zip(self, ha):
        res = self.dpstr.process_tenant(self.tenant)
        self.assertEqual(len(res), 1)
        self.assertFalse(res[0].success)
        self.assertEqual(self.notifier.sent, [(1, notify.ZIP_MISSING)])

    @mock.patch('nistoar.pln.depositor.has_archiver', return_value=True)
    def test_service_failure(self, ha):
        with mock.patch.object(self.cli, "get", return_value=Result(None, None, "down")):
            res = self.dpstr.process_tenant(self.tenant)
        self.assertEqual([r.stage for r in res], [dpstr.STAGE_SERVICE])
        self.assertFalse(res[0].success)
        self.assertEqual(self.notifier.sent, [(1, notify.HTTP_ERROR)])
        self.assertEqual(list(self.objects.find()), [])

    @mock.patch('nistoar.pln.depositor.has_archiver', return_value=True)
    def test_not_accepting(self, ha):
        with mock.patch.object(self.cli, "get", return_value=Result(200, sd_doc("No"), None)):
            res = self.dpstr.process_tenant(self.tenant)
        self.assertEqual(len(res), 1)
        self.assertFalse(res[0].success)
        self.assertIn("Deposits are welcome", res[0].error)
        self.assertEqual(list(self.objects.find()), [])

    @mock.patch('nistoar.pln.depositor.has_archiver', return_value=True)
    def test_terms_not_agreed(self, ha):
        self.settings.for_tenant(1).set('terms_of_use', {})
        with mock.patch.object(self.cli, "get", side_effect=self.net.get):
            res = self.dpstr.process_tenant(self.tenant)
        self.assertEqual(len(res), 1)
        self.assertFalse(res[0].success)
        self.assertIn((1, notify.TERMS_UPDATED), self.notifier.sent)
        self.assertEqual(list(self.objects.find()), [])

    @mock.patch('nistoar.pln.depositor.has_archiver', return_value=True)
    def test_stage_isolation(self, ha):
        self.dpstr.discover_new_content(self.tenant, ISSUE)
        self.dpstr.batch_new_objects(self.tenant, ISSUE, 5)
        deps = list(self.deposits.find_by_tenant(1))

        def package(dep, members):
            if dep.id == deps[0].id:
                raise RuntimeError("disk on fire")
            os.makedirs(self.storage.deposit_dir(dep))
            with open(self.storage.atom_path(dep), 'w') as fd:
                fd.write("<entry/>")
            dep.set_packaged()
            return True

        with mock.patch.object(self.dpstr.packager, "package_deposit", side_effect=package), \
             mock.patch.object(self.cli, "get", side_effect=self.net.get), \
             mock.patch.object(self.cli, "post_file", return_value=Result(500, b"", "500 Oops")):
            res = dpstr.RunReport(self.dpstr.process_tenant(self.tenant))

        pkg = res.stage(1, dpstr.STAGE_PACKAGE)
        self.assertFalse(pkg.success)
        self.assertEqual(pkg.processed, 3)
        self.assertIn(deps[0].uuid, pkg.error)
        self.assertNotIn(deps[1].uuid, pkg.error)

        failed = self.deposits.get(deps[0].id)
        self.assertTrue(failed.new)
        self.assertIn("disk on fire", failed.export_error)
        self.assertTrue(self.deposits.get(deps[1].id).packaged)

        # later stages still ran
        xfer = res.stage(1, dpstr.STAGE_TRANSFER)
        self.assertIsNotNone(xfer)
        self.assertFalse(xfer.success)
        self.assertEqual(xfer.processed, 2)
        self.assertIsNotNone(res.stage(1, dpstr.STAGE_POLL))

    @mock.patch('nistoar.pln.depositor.has_archiver', return_value=True)
    def test_no_terms_listed(self, ha):
        self.net.sd = sd_doc(terms=False)
        with mock.patch.object(self.dpstr, "package_deposits", return_value=0), \
             mock.patch.object(self.cli, "get", side_effect=self.net.get):
            res = dpstr.RunReport(self.dpstr.process_tenant(self.tenant))

        self.assertTrue(res.stage(1, dpstr.STAGE_SERVICE).success)
        self.assertEqual(self.settings.for_tenant(1).terms_of_use, {})
        self.assertEqual(res.stage(1, dpstr.STAGE_DISCOVER).processed, 3)
        self.assertEqual(len(list(self.deposits.find_by_tenant(1))), 3)

    def _add_tenant(self):
        self.content.add_tenant({"id": 3, "path": "j3", "name": "Journal of Blurf",
                                 "url": "https://ojs.example/j3", "issn": "8765-4321"})
        self.content.add_item({"id": 30, "tenant_id": 3, "kind": ISSUE, "volume": 4, "number": 1,
                               "modified": when(1), "date_published": when(1)})
        tset = self.settings.for_tenant(3, self.cfg)
        tset.enabled = True
        tset.update_terms(ServiceDocument.parse(sd_doc()).terms)
        tset.agree_to_terms()
        return self.content.get_tenant(3)

    @mock.patch('nistoar.pln.depositor.has_archiver', return_value=True)
    def test_bad_threshold_isolated(self, ha):
        tset = self.settings.for_tenant(1, self.cfg)
        tset.set('object_type', SUBMISSION)
        tset.set('object_threshold', "ten")
        self._add_tenant()

        with mock.patch.object(self.dpstr.packager, "package_deposit", return_value=False), \
             mock.patch.object(self.cli, "get", side_effect=self.net.get):
            report = self.dpstr.run()

        batch = report.stage(1, dpstr.STAGE_BATCH)
        self.assertFalse(batch.success)
        self.assertIn("ten", batch.error)
        self.assertEqual(report.stage(1, dpstr.STAGE_DISCOVER).processed, 12)
        self.assertIsNotNone(report.stage(1, dpstr.STAGE_POLL))

        # the other tenant is still processed
        self.assertEqual(report.stage(3, dpstr.STAGE_DISCOVER).processed, 1)
        self.assertEqual(report.stage(3, dpstr.STAGE_BATCH).processed, 1)
        self.assertEqual(len(list(self.deposits.find_by_tenant(3))), 1)
        self.assertTrue(report.stage(None, dpstr.STAGE_PRUNE).success)

    @mock.patch('nistoar.pln.depositor.has_archiver', return_value=True)
    def test_tenant_setup_failure_isolated(self, ha):
        self._add_tenant()

        def check(tenant):
            if tenant.id == 1:
                raise RuntimeError("settings unreadable")
            return None

        with mock.patch.object(self.dpstr, "check_preconditions", side_effect=check), \
             mock.patch.object(self.dpstr.packager, "package_deposit", return_value=False), \
             mock.patch.object(self.cli, "get", side_effect=self.net.get):
            report = self.dpstr.run()

        res = report.for_tenant(1)
        self.assertEqual(len(res), 1)
        self.assertEqual(res[0].stage, dpstr.STAGE_PRECONDITIONS)
        self.assertFalse(res[0].success)
        self.assertIn("settings unreadable", res[0].error)

        self.assertTrue(report.stage(3, dpstr.STAGE_DISCOVER).success)
        self.assertEqual(len(list(self.deposits.find_by_tenant(3))), 1)
        self.assertIsNotNone(report.stage(None, dpstr.STAGE_PRUNE))

    def test_run_stage(self):
        res = self.dpstr._run_stage(1, "goob", lambda: 4)
        self.assertEqual(res, dpstr.StageResult(1, "goob", True, 4, None))

        def fail():
            raise ValueError("bad input")
        res = self.dpstr._run_stage(1, "goob", fail)
        self.assertFalse(res.success)
        self.assertEqual(res.error, "bad input")

    def test_prune_orphaned(self):
        self.dpstr.discover_new_content(self.tenant, ISSUE)
        self.dpstr.batch_new_objects(self.tenant, ISSUE, 5)
        dep = next(self.deposits.find_by_tenant(1))
        os.makedirs(self.storage.deposit_dir(dep))
        self.objects.add(DepositObject(1, 13, ISSUE, 99))
        self.objects.add(DepositObject(1, 14, ISSUE))

        self.assertEqual(self.dpstr.prune_orphaned(), 1)
        self.assertEqual(len(list(self.objects.find())), 4)

        self.content.remove_tenant(1)
        self.assertEqual(self.dpstr.prune_orphaned(), 7)
        self.assertEqual(list(self.deposits.find()), [])
        self.assertEqual(list(self.objects.find()), [])
        self.assertFalse(os.path.exists(self.storage.deposit_dir(dep)))

    def test_reset_deposits(self):
        dep = Deposit(1)
        dep.set_packaged()
        dep.set_transferred()
        self.deposits.add(dep)
        os.makedirs(self.storage.deposit_dir(dep))

        with self.assertRaises(StateException):
            self.dpstr.reset_deposits(2, [dep.id])
        self.assertTrue(self.deposits.get(dep.id).transferred)

        out = self.dpstr.reset_deposits(1, [dep.id])
        self.assertEqual([d.id for d in out], [dep.id])
        self.assertTrue(self.deposits.get(dep.id).new)
        self.assertFalse(os.path.exists(self.storage.deposit_dir(dep)))

    @test.skipIf(not has_archiver(), "zip is not installed")
    def test_run_end_to_end(self):
        net = self.net
        with mock.patch.object(self.cli, "get", side_effect=net.get), \
             mock.patch.object(self.cli, "post_file", side_effect=net.post_file), \
             mock.patch.object(self.cli, "put_file", side_effect=net.put_file) as put:

            report = self.dpstr.run()
            self.assertTrue(report.ok, str(report.failures))
            self.assertEqual(report.stage(1, dpstr.STAGE_DISCOVER).processed, 3)
            self.assertEqual(report.stage(1, dpstr.STAGE_BATCH).processed, 3)
            self.assertEqual(report.stage(1, dpstr.STAGE_PACKAGE).processed, 3)
            self.assertEqual(report.stage(1, dpstr.STAGE_TRANSFER).processed, 3)
            self.assertEqual(report.for_tenant(2), [])
            put.assert_not_called()

            deps = list(self.deposits.find_by_tenant(1))
            self.assertEqual(len(deps), 3)
            for dep in deps:
                self.assertTrue(dep.transferred, dep.export_error)
                self.assertIn(dep.uuid, net.registered)
                self.assertTrue(self.storage.package_exists(dep))
                self.assertEqual(dep.staging_state, "depositedByJournal")

            for dep in deps:
                net.states[dep.uuid] = ("harvested", "")
            report = self.dpstr.run()
            self.assertTrue(report.ok, str(report.failures))
            self.assertEqual(report.stage(1, dpstr.STAGE_PACKAGE).processed, 0)
            self.assertEqual(report.stage(1, dpstr.STAGE_TRANSFER).processed, 0)
            for dep in self.deposits.find_by_tenant(1):
                self.assertTrue(dep.received)
                self.assertFalse(os.path.exists(self.storage.deposit_dir(dep)))

            for dep in deps:
                net.states[dep.uuid] = ("deposited", "agreement")
            self.dpstr.run()
            for dep in self.deposits.find_by_tenant(1):
                self.assertTrue(dep.lockss_agreement)
                self.assertIsNotNone(dep.preserved)
                self.assertEqual(dep.displayed_status, "completed")

            # preserved deposits are no longer polled
            net.state_requests = []
            report = self.dpstr.run()
            self.assertEqual(report.stage(1, dpstr.STAGE_POLL).processed, 0)
            self.assertEqual(net.state_requests, [])


if __name__ == '__main__':
    test.main()
