"""
Retrieval of the network's SWORD service document, which reports the network's capabilities
(maximum upload size, required checksum algorithm), whether it is currently accepting deposits,
and the terms of use that a tenant must agree to before depositing.
"""
import logging
from collections import OrderedDict

from lxml import etree

from . import system as _sys
from .client import PLNClient, Result
from .content import Tenant
from .settings import PLNSettings
from .notify import Notifier, TERMS_UPDATED
from .exceptions import PLNServerError

class ServiceDocument(object):
    """
    the contents of a service document

    :ivar max_upload_size:  the maximum size (in kB) of a package the network will accept
    :ivar checksum_type:    the checksum algorithm the network requires (e.g. "SHA-1")
    :ivar bool accepting:   True if the network is accepting deposits
    :ivar str accepting_message:  the network's explanation of its acceptance status
    :ivar terms:            an ordered dictionary of the terms of use; each maps a term's key to a
                            dictionary with ``updated`` and ``term``
    """

    def __init__(self, max_upload_size=None, checksum_type=None, accepting=False,
                 accepting_message=None, terms=None):
        self.max_upload_size = max_upload_size
        self.checksum_type = checksum_type
        self.accepting = accepting
        self.accepting_message = accepting_message
        self.terms = terms or OrderedDict()

    @classmethod
    def parse(cls, body):
        """
        parse a service document

        :param bytes body:  the serialized document
        :raise ValueError:  if the document cannot be parsed
        """
        try:
            root = etree.fromstring(body)
        except etree.XMLSyntaxError as ex:
            raise ValueError("Service document is not well-formed XML: "+str(ex))

        def first(name):
            found = root.xpath("//*[local-name()=$name]", name=name)
            return found[0] if found else None

        out = cls()
        el = first("maxUploadSize")
        if el is not None:
            out.max_upload_size = (el.text or "").strip() or None
        el = first("uploadChecksumType")
        if el is not None:
            out.checksum_type = (el.text or "").strip() or None
        el = first("pln_accepting")
        if el is not None:
            out.accepting = el.get("is_accepting") == "Yes"
            out.accepting_message = el.text
        el = first("terms_of_use")
        if el is not None:
            for term in el:
                if not isinstance(term.tag, str):
                    continue
                out.terms[etree.QName(term).localname] = {
                    "updated": term.get("updated"),
                    "term": "".join(term.itertext())
                }
        return out

def service_document_headers(tenant: Tenant, tset: PLNSettings):
    """
    return the HTTP headers that identify a tenant when requesting the service document
    """
    return {
        "On-Behalf-Of": tset.tenant_uuid,
        "Journal-URL": tenant.url or "",
        "Accept-Language": (tenant.locale or "en_US").lower().replace('_', '-')
    }

def refresh_service_document(tenant: Tenant, tset: PLNSettings, client: PLNClient,
                             notifier: Notifier=None, log=None) -> ServiceDocument:
    """
    retrieve the service document on behalf of a tenant and save the reported capabilities into
    the tenant's settings.  If the terms of use have changed, the tenant's prior agreement is
    cleared and its managers are notified.

    :return:  the parsed service document
    :raise PLNServerError:  if the service document could not be retrieved or parsed
    """
    if not log:
        log = _sys.getSysLogger().getChild("service")

    res = client.get(client.service_document_url(), service_document_headers(tenant, tset))
    if not res.ok:
        if res.status:
            log.error("Service document request for tenant %s failed: %s %s", tenant.id,
                      res.status, res.error)
        else:
            log.error("Unable to contact network for service document for tenant %s: %s",
                      tenant.id, res.error)
        res.raise_for_status("service document")

    try:
        sd = ServiceDocument.parse(res.body)
    except ValueError as ex:
        raise PLNServerError("service document", message=str(ex), cause=ex)

    tset.update_capabilities(sd.max_upload_size, sd.checksum_type, sd.accepting,
                             sd.accepting_message)
    if tset.update_terms(sd.terms):
        log.info("Terms of use have changed for tenant %s", tenant.id)
        if notifier:
            notifier.notify_managers(tenant.id, TERMS_UPDATED)
    return sd
