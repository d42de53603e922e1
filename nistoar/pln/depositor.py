"""
The orchestrator of the PLN deposit system.

A :py:class:`Depositor` executes a single pass over all tenants, running each tenant through a
fixed pipeline of stages:

1. refresh the network's service document (capabilities, acceptance, and terms of use),
2. discover new content and create :py:class:`~nistoar.pln.model.DepositObject` records for it,
3. flag deposits whose content has changed since they were built so that they get rebuilt,
4. batch unassigned objects into new deposits,
5. package the deposits that need packaging,
6. transfer the packaged deposits to the network, and
7. poll the network for the status of transferred deposits.

After all tenants are processed, records belonging to tenants or deposits that no longer exist
are pruned.  Each stage runs in isolation:  a failure in one stage is logged and reported but
does not prevent later stages (or other tenants) from running, and a failure on one deposit does
not prevent the others from being processed.  :py:meth:`Depositor.run` returns a
:py:class:`RunReport` listing the outcome of every stage.
"""
import logging
from collections import namedtuple
from collections.abc import Mapping
from typing import List, Iterator

from . import system as _sys
from .config import with_defaults, load_factory, get_required
from .content import ContentProvider, Tenant
from .client import PLNClient
from .exceptions import PLNException, ConfigurationException, StateException
from .model import Deposit, DepositObject, ISSUE, SUBMISSION
from .notify import Notifier, LogNotifier, ISSN_MISSING, ZIP_MISSING, HTTP_ERROR, TERMS_UPDATED
from .packager import DepositPackager
from .repo import DepositRepository, DepositObjectRepository, create_repositories
from .serialize import has_archiver
from .service import refresh_service_document
from .settings import SettingsStore, PLNSettings, create_settings_store
from .storage import DepositStorage
from .transfer import DepositTransferClient

STAGE_PRECONDITIONS = "preconditions"
STAGE_SERVICE = "service_document"
STAGE_DISCOVER = "discover"
STAGE_FLAG_UPDATED = "flag_updated"
STAGE_BATCH = "batch"
STAGE_PACKAGE = "package"
STAGE_TRANSFER = "transfer"
STAGE_POLL = "poll"
STAGE_PRUNE = "prune"

class StageResult(namedtuple("StageResult", "tenant stage success processed error")):
    """
    the outcome of running one stage for one tenant

    :ivar tenant:        the tenant's identifier (None for stages not specific to a tenant)
    :ivar str stage:     the name of the stage
    :ivar bool success:  False if the stage, or any item it processed, failed
    :ivar int processed: the number of items (objects or deposits) processed
    :ivar str error:     an explanation of the failure(s), or None
    """
    __slots__ = ()

StageResult.__new__.__defaults__ = (True, 0, None)

class RunReport(list):
    """
    the list of :py:class:`StageResult` instances produced by a run
    """

    @property
    def failures(self) -> List[StageResult]:
        return [r for r in self if not r.success]

    @property
    def ok(self) -> bool:
        return not self.failures

    def for_tenant(self, tenant_id) -> List[StageResult]:
        return [r for r in self if r.tenant == tenant_id]

    def stage(self, tenant_id, stage) -> StageResult:
        for r in self:
            if r.tenant == tenant_id and r.stage == stage:
                return r
        return None

class Depositor(object):
    """
    the engine that moves each tenant's content through packaging, transfer, and preservation
    """

    def __init__(self, config: Mapping, content: ContentProvider, deposits: DepositRepository,
                 objects: DepositObjectRepository, settings: SettingsStore,
                 notifier: Notifier=None, client: PLNClient=None, storage: DepositStorage=None,
                 log: logging.Logger=None):
        """
        :param dict                       config:  the system configuration
        :param ContentProvider           content:  the source of the content to preserve
        :param DepositRepository        deposits:  the store of Deposit records
        :param DepositObjectRepository   objects:  the store of DepositObject records
        :param SettingsStore            settings:  the store of per-tenant settings
        :param Notifier                 notifier:  the channel for notifying tenant managers; if
                                                   not provided, notices are only logged
        :param PLNClient                  client:  the client for the network's SWORD service; if
                                                   not provided, one is created from the config
        :param DepositStorage            storage:  the manager of on-disk deposit packages; if not
                                                   provided, one is created from the config
        """
        self.cfg = with_defaults(config)
        if not log:
            log = _sys.getSysLogger().getChild("depositor")
        self.log = log

        self.content = content
        self.deposits = deposits
        self.objects = objects
        self.settings = settings
        if not notifier:
            notifier = LogNotifier(self.log.getChild("notify"))
        self.notifier = notifier
        if not client:
            client = PLNClient(self.cfg.get('network_url'), self.cfg.get('http', {}),
                               self.log.getChild("client"))
        self.client = client
        if not storage:
            storage = DepositStorage.from_config(self.cfg)
        self.storage = storage

        self.packager = DepositPackager(content, settings, storage, self.cfg,
                                        self.log.getChild("packager"))
        self.transferer = DepositTransferClient(client, settings, storage, self.cfg,
                                                self.log.getChild("transfer"))

    @classmethod
    def from_config(cls, config: Mapping, notifier: Notifier=None):
        """
        create a Depositor with all of its collaborators created from the given configuration.
        The ``content_provider`` parameter must give a ``factory`` of the form
        "module:callable"; the callable is called with the ``content_provider`` dictionary to
        create the ContentProvider.
        """
        config = with_defaults(config)
        get_required(config, 'working_dir')
        cpcfg = config.get('content_provider')
        if not isinstance(cpcfg, Mapping) or not cpcfg.get('factory'):
            raise ConfigurationException("Missing required config parameter: "
                                         "content_provider.factory")
        content = load_factory(cpcfg['factory'])(cpcfg)
        deposits, objects = create_repositories(config.get('repository'))
        settings = create_settings_store(config.get('settings'))
        return cls(config, content, deposits, objects, settings, notifier)

    def tenant_settings(self, tenant_id) -> PLNSettings:
        return self.settings.for_tenant(tenant_id, self.cfg)

    def run(self, tenants: List=None) -> RunReport:
        """
        run all stages for all tenants (or the given ones), then prune orphaned records

        :param list tenants:  the identifiers of the tenants to process; if None, all tenants
                              are processed
        """
        report = RunReport()
        self.log.info("Starting PLN deposit run")
        try:
            alltenants = list(self.content.tenants())
        except Exception as ex:
            self.log.exception("Unable to list tenants: %s", str(ex))
            report.append(StageResult(None, STAGE_PRECONDITIONS, False, 0, str(ex)))
            return report

        for tenant in alltenants:
            if tenants is not None and tenant.id not in tenants:
                continue
            try:
                report.extend(self.process_tenant(tenant))
            except Exception as ex:
                self.log.exception("Tenant %s: unable to process: %s", tenant.id, str(ex))
                report.append(StageResult(tenant.id, STAGE_PRECONDITIONS, False, 0, str(ex)))

        report.append(self._run_stage(None, STAGE_PRUNE, self.prune_orphaned))
        self.log.info("PLN deposit run complete (%d failure%s)", len(report.failures),
                      "" if len(report.failures) == 1 else "s")
        return report

    def process_tenant(self, tenant: Tenant) -> List[StageResult]:
        """
        run the pipeline of stages for one tenant
        """
        out = []
        tset = self.tenant_settings(tenant.id)

        if not tset.enabled:
            self.log.debug("Preservation not enabled for tenant %s; skipping", tenant.id)
            return out

        self.log.info("Processing tenant %s (%s)", tenant.id, tenant.name)
        problem = self.check_preconditions(tenant)
        if problem:
            out.append(StageResult(tenant.id, STAGE_PRECONDITIONS, False, 0, problem))
            return out

        res = self._run_stage(tenant.id, STAGE_SERVICE, self.refresh_service, tenant, tset)
        out.append(res)
        if not res.success:
            return out

        try:
            kind = tset.object_type
        except ConfigurationException as ex:
            out.append(StageResult(tenant.id, STAGE_PRECONDITIONS, False, 0, str(ex)))
            return out

        for stage, func, args in [
            (STAGE_DISCOVER,     self.discover_new_content,  (tenant, kind)),
            (STAGE_FLAG_UPDATED, self.flag_updated_content,  (tenant, kind)),
            (STAGE_BATCH,        self.batch_new_objects,     (tenant, kind)),
            (STAGE_PACKAGE,      self.package_deposits,      (tenant,)),
            (STAGE_TRANSFER,     self.transfer_deposits,     (tenant,)),
            (STAGE_POLL,         self.update_deposit_status, (tenant,))
        ]:
            out.append(self._run_stage(tenant.id, stage, func, *args))

        return out

    def _run_stage(self, tenant_id, stage, func, *args) -> StageResult:
        self.log.debug("Tenant %s: running stage %s", tenant_id, stage)
        try:
            res = func(*args)
        except Exception as ex:
            self.log.exception("Tenant %s: stage %s failed: %s", tenant_id, stage, str(ex))
            return StageResult(tenant_id, stage, False, 0, str(ex))

        if isinstance(res, StageResult):
            return res._replace(tenant=tenant_id, stage=stage)
        return StageResult(tenant_id, stage, True, res or 0, None)

    def check_preconditions(self, tenant: Tenant) -> str:
        """
        check that a tenant's content can be deposited, notifying its managers if it cannot.
        :return:  an explanation of the problem or None if there is none
        """
        if not has_archiver():
            self.log.warning("zip is not installed; cannot deposit content for tenant %s", tenant.id)
            self.notifier.notify_managers(tenant.id, ZIP_MISSING)
            return "Archiver (zip) not available"
        if not tenant.issn:
            self.log.warning("Tenant %s has no ISSN; skipping", tenant.id)
            self.notifier.notify_managers(tenant.id, ISSN_MISSING)
            return "Tenant has no ISSN"
        return None

    def refresh_service(self, tenant: Tenant, tset: PLNSettings) -> StageResult:
        """
        retrieve the network's service document on behalf of the tenant and confirm that
        deposits may proceed
        """
        try:
            refresh_service_document(tenant, tset, self.client, self.notifier,
                                     self.log.getChild("service"))
        except PLNException as ex:
            self.notifier.notify_managers(tenant.id, HTTP_ERROR)
            return StageResult(tenant.id, STAGE_SERVICE, False, 0, str(ex))

        if not tset.accepting:
            self.log.info("Network is not accepting deposits: %s", tset.accepting_message)
            return StageResult(tenant.id, STAGE_SERVICE, False, 0,
                               "Network not accepting deposits: %s" % (tset.accepting_message or ""))
        if not tset.terms_agreed():
            self.log.warning("Tenant %s has not agreed to the current terms of use", tenant.id)
            self.notifier.notify_managers(tenant.id, TERMS_UPDATED)
            return StageResult(tenant.id, STAGE_SERVICE, False, 0, "Terms of use not agreed to")
        return StageResult(tenant.id, STAGE_SERVICE, True, 1, None)

    def discover_new_content(self, tenant: Tenant, kind: str) -> int:
        """
        create DepositObject records for the tenant's published content that does not have one
        :return:  the number of records created
        """
        known = set(o.content_id for o in self.objects.find_by_tenant(tenant.id, kind))
        count = 0
        for item in self.content.published_items(tenant.id, kind):
            if item.id in known:
                continue
            self.objects.add(DepositObject(tenant.id, item.id, kind, modified=item.modified))
            known.add(item.id)
            count += 1
        if count:
            self.log.info("Tenant %s: found %d new %s item%s", tenant.id, count, kind,
                          "" if count == 1 else "s")
        return count

    def flag_updated_content(self, tenant: Tenant, kind: str) -> int:
        """
        reset the deposits containing content that has changed since it was last observed
        :return:  the number of objects found to have changed
        """
        count = 0
        for obj in list(self.objects.find_by_tenant(tenant.id, kind)):
            if obj.deposit_id is None:
                continue
            item = self.content.get_item(tenant.id, kind, obj.content_id)
            if not item or not item.modified or not obj.modified or item.modified <= obj.modified:
                continue

            obj.modified = item.modified
            self.objects.edit(obj)
            count += 1
            if not self.deposits.exists(obj.deposit_id):
                continue
            dep = self.deposits.get(obj.deposit_id)
            if not dep.new:
                self.log.info("Content of %s %s has changed; resetting deposit %s", kind,
                              obj.content_id, dep.uuid)
                dep.reset_to_new()
                self.deposits.edit(dep)
        return count

    def batch_new_objects(self, tenant: Tenant, kind: str, threshold: int=None) -> int:
        """
        assign unbatched objects to new deposits.  Issues get one deposit each; submissions are
        grouped into deposits of ``threshold`` objects, and an incomplete group is left for a
        later run.
        :param int threshold:  the submission batch size; if None, the tenant's
                               ``object_threshold`` setting is used
        :return:  the number of deposits created
        """
        unbatched = list(self.objects.find_unbatched(tenant.id, kind))
        if kind == SUBMISSION:
            if threshold is None:
                threshold = self.tenant_settings(tenant.id).object_threshold
            if threshold < 1:
                raise ConfigurationException("object_threshold must be a positive integer")
            groups = [unbatched[i:i+threshold] for i in range(0, len(unbatched), threshold)]
            groups = [g for g in groups if len(g) == threshold]
        else:
            groups = [[o] for o in unbatched]

        for group in groups:
            dep = Deposit(tenant.id, kind)
            self.deposits.add(dep)
            for obj in group:
                obj.deposit_id = dep.id
                self.objects.edit(obj)
            self.log.info("Tenant %s: created deposit %s with %d %s object%s", tenant.id, dep.uuid,
                          len(group), kind, "" if len(group) == 1 else "s")
        return len(groups)

    def _process_deposits(self, tenant, deposits: Iterator[Deposit], action, what) -> StageResult:
        count = 0
        failed = []
        for dep in deposits:
            count += 1
            self.log.debug("%s deposit %s (%s/%s/%s)", what, dep.uuid, dep.local_status,
                           dep.processing_status, dep.lockss_status)
            try:
                ok = action(dep)
            except Exception as ex:
                self.log.exception("Unexpected failure %s deposit %s: %s", what.lower(), dep.uuid,
                                   str(ex))
                dep.record_error(str(ex))
                dep.stamp_status()
                ok = False
            try:
                self.deposits.edit(dep)
            except PLNException as ex:
                self.log.error("Failed to save deposit %s: %s", dep.uuid, str(ex))
                ok = False
            if not ok:
                failed.append(dep.uuid)

        error = None
        if failed:
            error = "%s failed for deposit%s: %s" % (what, "" if len(failed) == 1 else "s",
                                                     ", ".join(failed))
        return StageResult(tenant.id, None, not failed, count, error)

    def package_deposits(self, tenant: Tenant) -> StageResult:
        """
        build the packages for the tenant's deposits that need (re-)packaging
        """
        def package(dep):
            members = list(self.objects.find_by_deposit(dep.id))
            return self.packager.package_deposit(dep, members)

        deps = self.deposits.order_by_error(self.deposits.ready_to_package(tenant.id), False)
        return self._process_deposits(tenant, deps, package, "Packaging")

    def transfer_deposits(self, tenant: Tenant) -> StageResult:
        """
        transfer the tenant's packaged deposits to the network
        """
        deps = self.deposits.order_by_error(self.deposits.ready_to_transfer(tenant.id), False)
        return self._process_deposits(tenant, deps, self.transferer.transfer, "Transferring")

    def update_deposit_status(self, tenant: Tenant) -> StageResult:
        """
        poll the network for the status of the tenant's transferred deposits
        """
        deps = self.deposits.ready_for_update(tenant.id)
        return self._process_deposits(tenant, deps, self.transferer.poll_status, "Polling")

    def prune_orphaned(self) -> int:
        """
        delete the deposits (and their packages) of tenants that no longer exist, and the
        objects that reference missing tenants or deposits
        :return:  the number of records deleted
        """
        gone = self.deposits.prune_orphaned(self.content.tenant_exists)
        for dep in gone:
            self.log.info("Pruned deposit %s of missing tenant %s", dep.uuid, dep.tenant_id)
            self.storage.remove(dep)
        objs = self.objects.prune_orphaned(self.content.tenant_exists, self.deposits)
        if objs:
            self.log.info("Pruned %d orphaned deposit objects", len(objs))
        return len(gone) + len(objs)

    def reset_deposits(self, tenant_id, ids) -> List[Deposit]:
        """
        reset the given deposits so that they are repackaged and retransferred on the next run

        :param tenant_id:  the tenant the deposits must belong to
        :param list  ids:  the local identifiers of the deposits
        :return:  the deposits that were reset
        """
        out = []
        for id in ids:
            dep = self.deposits.get(id)
            if dep.tenant_id != tenant_id:
                raise StateException("Deposit %s does not belong to tenant %s" %
                                             (id, tenant_id))
            dep.reset_to_new()
            self.deposits.edit(dep)
            self.storage.remove(dep)
            out.append(dep)
        return out
