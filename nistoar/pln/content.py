"""
The interface to the publishing system whose content is being preserved.

A :py:class:`ContentProvider` gives the deposit system read access to tenants (e.g. journals),
their published content items (issues and submissions), and the ability to export those items
as XML documents.  Implementations are supplied by the host application and are selected via the
``content_provider`` configuration parameter.
"""
import os
from abc import ABC, abstractmethod
from datetime import datetime
from collections import namedtuple, OrderedDict
from collections.abc import Mapping
from typing import Iterator, List

from lxml import etree

from .exceptions import ExportError

Tenant = namedtuple("Tenant", "id path name url email locale issn publisher_name publisher_url "
                              "license")
Tenant.__new__.__defaults__ = (None, "en_US", None, None, None, None)
Tenant.__doc__ = """
a description of a tenant (e.g. a journal) whose content is preserved.

:ivar       id:  the tenant's local identifier
:ivar str path:  the URL path segment identifying the tenant
:ivar str name:  the tenant's title
:ivar str  url:  the base URL of the tenant's public site
:ivar str email: the contact email for the tenant's manager
:ivar str locale:  the tenant's primary locale (e.g. "en_US")
:ivar str issn:  the tenant's identifying code (online ISSN or print ISSN)
:ivar dict license: the license details:  ``openAccessPolicy``, ``licenseURL``,
                 ``publishingMode`` (``Open``, ``Subscription``, or ``None``), ``copyrightNotice``,
                 ``copyrightBasis``, and ``copyrightHolder``
"""

ContentItem = namedtuple("ContentItem", "id tenant_id kind modified published date_published "
                                        "volume number")
ContentItem.__new__.__defaults__ = (True, None, None, None)
ContentItem.__doc__ = """
a description of a content item (an issue or a submission).

:ivar          id:  the item's local identifier
:ivar   tenant_id:  the identifier of the tenant that owns the item
:ivar str    kind:  ``Issue`` or ``Submission``
:ivar datetime modified:  the time the item was last modified
:ivar bool published:  True if the item is published
:ivar datetime date_published:  the publication date
:ivar volume:   the volume (for issues)
:ivar number:   the issue number (for issues)
"""

class ContentProvider(ABC):
    """
    an abstract interface to the content of a publishing system
    """

    def __init__(self, config: Mapping=None):
        if config is None:
            config = {}
        self.cfg = config

    @abstractmethod
    def tenants(self) -> Iterator[Tenant]:
        """
        iterate through all of the tenants in the system
        """
        raise NotImplementedError()

    def get_tenant(self, id) -> Tenant:
        """
        return the tenant with the given identifier or None if it does not exist
        """
        for t in self.tenants():
            if t.id == id:
                return t
        return None

    def get_tenant_by_path(self, path) -> Tenant:
        """
        return the tenant with the given URL path or None if it does not exist
        """
        for t in self.tenants():
            if t.path == path:
                return t
        return None

    def tenant_exists(self, id) -> bool:
        return self.get_tenant(id) is not None

    @abstractmethod
    def published_items(self, tenant_id, kind) -> List[ContentItem]:
        """
        return the published items of the given kind that belong to a tenant
        """
        raise NotImplementedError()

    def get_item(self, tenant_id, kind, id) -> ContentItem:
        """
        return the item with the given identifier or None if it is not found.  This will
        return unpublished items as well as published ones.
        """
        for item in self.published_items(tenant_id, kind):
            if item.id == id:
                return item
        return None

    @abstractmethod
    def export(self, tenant_id, kind, ids: List) -> bytes:
        """
        export the given items as a single XML document.  Within the document, references to
        files are given via ``pkp:submission_file//pkp:href`` elements whose ``src`` attribute
        gives a path that can be resolved via :py:meth:`file_path`.

        :param tenant_id:  the owner of the items
        :param str  kind:  the kind of items to export
        :param list  ids:  the identifiers of the items to export
        :return:  the serialized XML document
        :raise ExportError:  if the export fails
        """
        raise NotImplementedError()

    def file_path(self, tenant_id, relpath) -> str:
        """
        resolve a file reference found in an exported document to a local file path
        """
        return relpath

    def reference_schemas(self) -> List[str]:
        """
        return the paths to the XML Schema documents that describe exported documents; these will
        be included in every deposit package.
        """
        return []

EXPORT_NS = "http://pkp.sfu.ca"

def _as_datetime(val):
    if val is None or isinstance(val, datetime):
        return val
    return datetime.fromisoformat(val)

class InMemoryContentProvider(ContentProvider):
    """
    a ContentProvider whose tenants and content items are held in memory; this is provided
    primarily for testing.

    The configuration may contain:

    ``tenants``
        a list of dictionaries, each giving the fields of a :py:class:`Tenant`
    ``items``
        a list of dictionaries, each giving the fields of a :py:class:`ContentItem` plus an
        optional ``files`` list of file paths referenced by the item's export
    ``files_dir``
        the directory that file references are resolved against
    ``schemas``
        a list of paths to XML Schema documents describing the export format
    """

    def __init__(self, config: Mapping=None):
        super(InMemoryContentProvider, self).__init__(config)
        self._tenants = OrderedDict()
        self._items = OrderedDict()
        self._files = {}
        for t in self.cfg.get('tenants', []):
            self.add_tenant(t)
        for i in self.cfg.get('items', []):
            i = dict(i)
            files = i.pop('files', None)
            self.add_item(i, files)

    def add_tenant(self, tenant):
        """
        add (or replace) a tenant
        :param tenant:  a Tenant or a dictionary of its fields
        """
        if isinstance(tenant, Mapping):
            tenant = Tenant(**tenant)
        self._tenants[tenant.id] = tenant
        return tenant

    def remove_tenant(self, id):
        self._tenants.pop(id, None)

    def tenants(self) -> Iterator[Tenant]:
        return iter(list(self._tenants.values()))

    def add_item(self, item, files: List[str]=None):
        """
        add (or replace) a content item
        :param item:   a ContentItem or a dictionary of its fields
        :param files:  the paths of the files the item's export refers to
        """
        if isinstance(item, Mapping):
            item = dict(item)
            for key in ('modified', 'date_published'):
                item[key] = _as_datetime(item.get(key))
            item = ContentItem(**item)
        self._items[(item.tenant_id, item.kind, item.id)] = item
        if files is not None:
            self._files[(item.tenant_id, item.kind, item.id)] = list(files)
        return item

    def update_item(self, tenant_id, kind, id, **fields):
        """
        change the fields of an existing item
        """
        key = (tenant_id, kind, id)
        self._items[key] = self._items[key]._replace(**fields)
        return self._items[key]

    def published_items(self, tenant_id, kind) -> List[ContentItem]:
        return [i for i in self._items.values()
                  if i.tenant_id == tenant_id and i.kind == kind and i.published]

    def get_item(self, tenant_id, kind, id) -> ContentItem:
        return self._items.get((tenant_id, kind, id))

    def export(self, tenant_id, kind, ids: List) -> bytes:
        tag = kind.lower()
        root = etree.Element("{%s}%ss" % (EXPORT_NS, tag), nsmap={"pkp": EXPORT_NS})
        for id in ids:
            item = self._items.get((tenant_id, kind, id))
            if not item:
                raise ExportError("%s not found: %s" % (kind, id))
            el = etree.SubElement(root, "{%s}%s" % (EXPORT_NS, tag), id=str(id))
            if item.volume is not None:
                etree.SubElement(el, "{%s}volume" % EXPORT_NS).text = str(item.volume)
            if item.number is not None:
                etree.SubElement(el, "{%s}number" % EXPORT_NS).text = str(item.number)
            for path in self._files.get((tenant_id, kind, id), []):
                sf = etree.SubElement(el, "{%s}submission_file" % EXPORT_NS)
                embed = etree.SubElement(sf, "{%s}file" % EXPORT_NS)
                etree.SubElement(embed, "{%s}href" % EXPORT_NS, src=path)
        return etree.tostring(root, xml_declaration=True, encoding="UTF-8")

    def file_path(self, tenant_id, relpath) -> str:
        if self.cfg.get('files_dir') and not os.path.isabs(relpath):
            return os.path.join(self.cfg['files_dir'], relpath)
        return relpath

    def reference_schemas(self) -> List[str]:
        return list(self.cfg.get('schemas', []))
