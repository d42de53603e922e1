"""
The packaging engine:  turns a deposit and its member content into a serialized BagIt bag and an
Atom metadata document describing it.

The bag contains the tenant's exported content (with its file references rewritten to point
into the bag), the files those references point to, the XML Schema documents describing the
export format, and a snapshot of the network's terms of use as agreed to by the tenant at the time
of the deposit.  The Atom document carries the tenant's identity, the URL from which the network
can retrieve the bag, and the bag's size and checksum.
"""
import os, re, math, logging
from collections import OrderedDict
from collections.abc import Mapping
from typing import List, Tuple

from lxml import etree

from . import system as _sys
from .bag import BagBuilder
from .content import ContentProvider, Tenant, EXPORT_NS
from .exceptions import PLNException, PackagingError, ExportError
from .model import Deposit, DepositObject, ISSUE, SUBMISSION
from .serialize import zip_serialize
from .settings import SettingsStore
from .storage import DepositStorage
from .utils import checksum_of, rmtree
from .config import DEF_VERSION_TAG

ATOM_NS = "http://www.w3.org/2005/Atom"
DCTERMS_NS = "http://purl.org/dc/terms/"
PKP_SWORD_NS = "http://pkp.sfu.ca/SWORD"
PKP_EXPORT_NS = EXPORT_NS
TERMS_NS = "terms"

_atom_nsmap = OrderedDict([(None, ATOM_NS), ("dcterms", DCTERMS_NS), ("pkp", PKP_SWORD_NS)])
_terms_nsmap = OrderedDict([(None, ATOM_NS), ("dcterms", DCTERMS_NS), ("pkp", TERMS_NS)])

# characters not allowed in XML 1.0
_invalid_xml_chars = re.compile("[^\u0009\u000A\u000D\u0020-\uD7FF\uE000-\uFFFD\U00010000-\U0010FFFF]")

_publishing_modes = ("Open", "Subscription", "None")

def filter_text(text) -> str:
    """
    return the given value as a string with all characters not allowed in XML removed
    """
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return _invalid_xml_chars.sub("", str(text))

def _text_element(parent, tag, text):
    el = etree.SubElement(parent, tag)
    text = filter_text(text)
    if text:
        # a CDATA section may not contain its own terminator
        el.text = etree.CDATA(text) if "]]>" not in text else text
    return el

class DepositPackager(object):
    """
    a class that builds the deposit package (a zip-serialized bag) and the Atom metadata
    document for deposits.
    """

    def __init__(self, content: ContentProvider, settings: SettingsStore, storage: DepositStorage,
                 config: Mapping=None, log: logging.Logger=None):
        """
        :param ContentProvider content:  the source of the content being deposited
        :param SettingsStore  settings:  the store of tenant settings
        :param DepositStorage  storage:  the manager of the on-disk deposit directories
        :param dict             config:  the system configuration; the ``app_version``,
                                         ``version_tag``, and ``checksum_type`` parameters are
                                         consulted.
        """
        if config is None:
            config = {}
        self.cfg = config
        self.content = content
        self.settings = settings
        self.storage = storage
        if not log:
            log = _sys.getSysLogger().getChild("packager")
        self.log = log

    @property
    def app_version(self):
        return self.cfg.get('app_version', "(unknown)")

    def package_deposit(self, deposit: Deposit, members: List[DepositObject]) -> bool:
        """
        build the deposit package and metadata document for the given deposit, updating its
        status accordingly.  On success, the deposit is marked as packaged; on failure, the
        failure is recorded as the deposit's error message and any partially built artifacts
        are removed.  Either way, the status date is stamped.

        :return:  True if the packaging was successful
        """
        try:
            self.package(deposit, members)
        except PLNException as ex:
            self.log.error("Failed to package deposit %s: %s", deposit.uuid, str(ex))
            deposit.record_error(str(ex))
            deposit.stamp_status()
            return False
        except (OSError, ValueError, etree.LxmlError) as ex:
            self.log.exception("Unexpected failure packaging deposit %s: %s", deposit.uuid, str(ex))
            deposit.record_error("Failed to package deposit: "+str(ex))
            deposit.stamp_status()
            return False

        deposit.set_packaged()
        self.log.info("Packaged deposit %s", deposit.uuid)
        return True

    def package(self, deposit: Deposit, members: List[DepositObject]) -> str:
        """
        build the deposit package and the Atom metadata document for the given deposit.  Any
        artifacts from a previous attempt are replaced.

        :return:  the path to the serialized bag
        :raise PackagingError:  if the package could not be built; in this case, no artifacts
                                are left behind.
        """
        with self.storage.lock_for(deposit):
            self.remove(deposit)
            try:
                pkgfile = self.generate_package(deposit, members)
                self.generate_atom_document(deposit, members)
            except Exception:
                self.remove(deposit)
                raise
        return pkgfile

    def _tenant(self, deposit) -> Tenant:
        tenant = self.content.get_tenant(deposit.tenant_id)
        if not tenant:
            raise PackagingError("Tenant for deposit no longer exists: "+str(deposit.tenant_id),
                                 deposit.uuid, sys=_sys)
        return tenant

    def _select_items(self, deposit: Deposit, members: List[DepositObject]):
        """
        return the content items to export for the deposit
        """
        members = [m for m in members if m.kind == deposit.object_kind]
        if deposit.object_kind == ISSUE:
            # an issue deposit only ever packages a single issue
            members = members[:1]
        elif deposit.object_kind != SUBMISSION:
            raise ExportError("Unsupported deposit object type: "+str(deposit.object_kind),
                              deposit.uuid, sys=_sys)

        out = []
        for m in members:
            item = self.content.get_item(deposit.tenant_id, m.kind, m.content_id)
            if not item:
                self.log.warning("%s %s for deposit %s no longer exists", m.kind, m.content_id,
                                 deposit.uuid)
                continue
            if item.tenant_id != deposit.tenant_id or not item.published:
                continue
            out.append(item)
        return out

    def export_content(self, deposit: Deposit, members: List[DepositObject]) -> bytes:
        """
        export the deposit's member content as a single XML document
        :raise ExportError:  if nothing could be exported
        """
        items = self._select_items(deposit, members)
        if not items:
            raise ExportError("No exportable %s content found for deposit" % deposit.object_kind,
                              deposit.uuid, sys=_sys)
        try:
            out = self.content.export(deposit.tenant_id, deposit.object_kind, [i.id for i in items])
        except ExportError:
            raise
        except Exception as ex:
            raise ExportError("Failed to export %s content: %s" % (deposit.object_kind, str(ex)),
                              deposit.uuid, ex, sys=_sys)
        if not out:
            raise ExportError("Export of %s content produced nothing" % deposit.object_kind,
                              deposit.uuid, sys=_sys)
        if isinstance(out, str):
            out = out.encode("utf-8")
        return out

    def clean_file_list(self, xml: bytes) -> Tuple[bytes, Mapping]:
        """
        rewrite the file references in an exported document to point into the bag's ``files``
        directory.

        :return:  a tuple of the rewritten document and a dictionary mapping each referenced
                  source path to its target path within the bag's payload
        """
        root = etree.fromstring(xml)
        filelist = OrderedDict()
        for href in root.xpath("//pkp:submission_file//pkp:href", namespaces={"pkp": PKP_EXPORT_NS}):
            src = href.get("src")
            if not src:
                continue
            target = "files/" + os.path.basename(src)
            filelist[src] = target
            href.set("src", target)
        return etree.tostring(root, xml_declaration=True, encoding="UTF-8"), filelist

    def generate_terms_document(self, tenant_id) -> bytes:
        """
        create the document that records the terms of use and the tenant's agreement to them
        """
        tset = self.settings.for_tenant(tenant_id, self.cfg)
        terms = tset.terms_of_use
        agreement = tset.terms_of_use_agreement

        entry = etree.Element("{%s}entry" % ATOM_NS, nsmap=_terms_nsmap)
        tou = etree.SubElement(entry, "{%s}terms_of_use" % TERMS_NS)
        for name, data in terms.items():
            el = etree.SubElement(tou, "{%s}%s" % (TERMS_NS, name))
            el.text = filter_text(data.get('term'))
            el.set("updated", filter_text(data.get('updated')))
            el.set("agreed", filter_text(agreement.get(name)))
        return etree.tostring(entry, xml_declaration=True, encoding="UTF-8", pretty_print=True)

    def _reference_schemas(self):
        schemas = self.content.reference_schemas() or []
        names = [os.path.basename(s) for s in schemas]
        out = []
        for path in schemas:
            with open(path, encoding="utf-8") as fd:
                text = fd.read()
            for name in names:
                text = re.sub(r'schemaLocation="[^"]*/%s"' % re.escape(name),
                              'schemaLocation="%s"' % name, text)
            out.append((os.path.basename(path), text))
        return out

    def generate_package(self, deposit: Deposit, members: List[DepositObject]) -> str:
        """
        export the deposit's content and build it into a zip-serialized bag

        :return:  the path to the serialized bag
        :raise PackagingError:  if the content cannot be exported or the bag cannot be built
        """
        xml = self.export_content(deposit, members)
        try:
            xml, filelist = self.clean_file_list(xml)
        except etree.XMLSyntaxError as ex:
            raise ExportError("Exported content is not well-formed XML: "+str(ex), deposit.uuid,
                              ex, sys=_sys)

        ddir = self.storage.deposit_dir(deposit)
        bagdir = os.path.join(ddir, deposit.uuid)
        bag = BagBuilder(bagdir, self.log.getChild("bag"))
        bag.ensure_bagdir()

        bag.add_data_content(deposit.object_kind + deposit.uuid + ".xml", xml)
        for src, target in filelist.items():
            srcpath = self.content.file_path(deposit.tenant_id, src)
            if not os.path.isfile(srcpath):
                raise PackagingError("Referenced file not found: "+src, deposit.uuid, sys=_sys)
            bag.add_data_file(srcpath, target)

        for name, text in self._reference_schemas():
            bag.add_data_content(name, text)

        bag.add_data_content("terms" + deposit.uuid + ".xml",
                             self.generate_terms_document(deposit.tenant_id))
        bag.set_info(self.cfg.get('version_tag', DEF_VERSION_TAG), self.app_version)
        bag.finalize()

        pkgfile = zip_serialize(bagdir, ddir, self.log, os.path.basename(self.storage.package_path(deposit)))
        rmtree(bagdir)
        return pkgfile

    def generate_atom_document(self, deposit: Deposit, members: List[DepositObject]) -> str:
        """
        create the Atom document describing the deposit's package.  The package must already
        exist, as its size and checksum are included in the document.

        :return:  the path to the Atom document
        :raise PackagingError:  if the package does not exist
        """
        pkgfile = self.storage.package_path(deposit)
        if not os.path.isfile(pkgfile):
            raise PackagingError("Deposit package not found: "+pkgfile, deposit.uuid, sys=_sys)

        tenant = self._tenant(deposit)
        tset = self.settings.for_tenant(deposit.tenant_id, self.cfg)

        entry = etree.Element("{%s}entry" % ATOM_NS, nsmap=_atom_nsmap)
        _text_element(entry, "{%s}email" % ATOM_NS, tenant.email)
        _text_element(entry, "{%s}title" % ATOM_NS, tenant.name)
        _text_element(entry, "{%s}journal_url" % PKP_SWORD_NS, tenant.url)
        _text_element(entry, "{%s}publisherName" % PKP_SWORD_NS, tenant.publisher_name)
        _text_element(entry, "{%s}publisherUrl" % PKP_SWORD_NS, tenant.publisher_url)
        _text_element(entry, "{%s}issn" % PKP_SWORD_NS, tenant.issn)
        _text_element(entry, "{%s}id" % ATOM_NS, "urn:uuid:" + deposit.uuid)
        _text_element(entry, "{%s}updated" % ATOM_NS,
                      deposit.modified.strftime("%Y-%m-%d %H:%M:%S") if deposit.modified else "")

        url = "%s/%s/deposits/%s" % ((tenant.url or "").rstrip('/'), self.storage.deposit_folder,
                                     deposit.uuid)
        details = _text_element(entry, "{%s}content" % PKP_SWORD_NS, url)
        details.set("size", str(int(math.ceil(os.stat(pkgfile).st_size / 1000.0))))

        volume, issue, pubdate = self._bibliographic_facts(deposit, members)
        details.set("volume", filter_text(volume))
        details.set("issue", filter_text(issue))
        details.set("pubdate", pubdate.strftime("%Y-%m-%d") if pubdate else "")
        details.set("ojsVersion", filter_text(self.app_version))

        ctype = tset.checksum_type
        if ctype in ("SHA-1", "MD5"):
            details.set("checksumType", ctype)
            details.set("checksumValue", checksum_of(pkgfile, ctype))

        lic = tenant.license or {}
        license = etree.SubElement(entry, "{%s}license" % PKP_SWORD_NS)
        _text_element(license, "{%s}openAccessPolicy" % PKP_SWORD_NS, lic.get('openAccessPolicy'))
        _text_element(license, "{%s}licenseURL" % PKP_SWORD_NS, lic.get('licenseURL'))
        mode = etree.SubElement(license, "{%s}publishingMode" % PKP_SWORD_NS)
        mode.text = lic.get('publishingMode') if lic.get('publishingMode') in _publishing_modes else ""
        _text_element(license, "{%s}copyrightNotice" % PKP_SWORD_NS, lic.get('copyrightNotice'))
        _text_element(license, "{%s}copyrightBasis" % PKP_SWORD_NS, lic.get('copyrightBasis'))
        _text_element(license, "{%s}copyrightHolder" % PKP_SWORD_NS, lic.get('copyrightHolder'))

        atomfile = self.storage.atom_path(deposit)
        with open(atomfile, 'wb') as fd:
            fd.write(etree.tostring(entry, xml_declaration=True, encoding="UTF-8", pretty_print=True))
        return atomfile

    def _bibliographic_facts(self, deposit, members):
        volume = ""
        issue = ""
        pubdate = None
        for m in members:
            item = self.content.get_item(deposit.tenant_id, m.kind, m.content_id)
            if not item:
                continue
            if m.kind == ISSUE:
                volume = item.volume if item.volume is not None else ""
                issue = item.number if item.number is not None else ""
            if item.date_published and (pubdate is None or item.date_published > pubdate):
                pubdate = item.date_published
        return volume, issue, pubdate

    def remove(self, deposit: Deposit) -> bool:
        """
        remove the deposit's package and metadata document from disk
        """
        ddir = self.storage.deposit_dir(deposit)
        if os.path.exists(ddir):
            self.log.debug("Removing deposit directory %s", ddir)
            rmtree(ddir)
            return True
        return False
