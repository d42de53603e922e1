"""
A client for the SWORD (v2) service of a Private LOCKSS Network.

The :py:class:`PLNClient` wraps the HTTP exchanges with the network.  Rather than raising
exceptions for error responses, its methods return a :py:class:`Result` that captures the
response's status, body, and (when the request failed) an error message; transport failures
are reported the same way, with a ``status`` of None.  This allows callers to decide how each
class of response affects the state of a deposit.
"""
import os, logging
from collections import namedtuple
from collections.abc import Mapping

import requests
from lxml import etree

from . import system as _sys
from .config import DEF_NETWORK_URL
from .exceptions import PLNServerError, PLNClientError, PLNResourceNotFound

SD_EP = "/api/sword/2.0/sd-iri"
COL_EP = "/api/sword/2.0/col-iri"
CONT_EP = "/api/sword/2.0/cont-iri"

ATOM_CONTENT_TYPE = "application/atom+xml"

class Result(namedtuple("Result", "status body error")):
    """
    the outcome of an HTTP request to the network.

    :ivar int  status:  the HTTP status code, or None if no response was received
    :ivar bytes  body:  the body of the response
    :ivar str   error:  an explanation of the failure, or None if the request succeeded
    """
    __slots__ = ()

    @property
    def status_class(self):
        """
        the class of the response status (e.g. 2 for any 2xx response), or None if no response
        was received
        """
        if self.status is None:
            return None
        return int(self.status) // 100

    @property
    def ok(self):
        return self.status_class == 2

    def raise_for_status(self, resource=None):
        """
        raise the exception appropriate for an unsuccessful result
        """
        if self.ok:
            return
        if self.status is None:
            raise PLNServerError(resource, message=self.error)
        if self.status == 404:
            raise PLNResourceNotFound(resource, message=self.error)
        if self.status_class == 4:
            raise PLNClientError(resource, self.status, None, self.error)
        raise PLNServerError(resource, self.status, None, self.error)

def error_summary(body):
    """
    extract the explanation of an error from a SWORD error document, returning None if the body
    is not such a document
    """
    if not body:
        return None
    try:
        root = etree.fromstring(body)
    except (etree.XMLSyntaxError, ValueError):
        return None
    summary = root.xpath("//*[local-name()='summary']")
    if summary and summary[0].text:
        return summary[0].text.strip()
    return None

class PLNClient(object):
    """
    a client for the SWORD service of a Private LOCKSS Network
    """

    def __init__(self, network_url=DEF_NETWORK_URL, config: Mapping=None, log: logging.Logger=None):
        """
        :param str network_url:  the base URL of the network's service
        :param dict     config:  the HTTP configuration:  ``timeout`` gives the request timeout in
                                 seconds; ``verify`` controls verification of the server's
                                 certificate.
        """
        if not network_url:
            network_url = DEF_NETWORK_URL
        self.baseurl = network_url.rstrip('/')
        if config is None:
            config = {}
        self._reqkw = {}
        if config.get('timeout'):
            self._reqkw['timeout'] = config['timeout']
        if 'verify' in config:
            self._reqkw['verify'] = config['verify']
        if not log:
            log = _sys.getSysLogger().getChild("client")
        self.log = log

    def service_document_url(self):
        return self.baseurl + SD_EP

    def collection_url(self, tenant_uuid):
        return "%s%s/%s" % (self.baseurl, COL_EP, tenant_uuid)

    def content_url(self, tenant_uuid, deposit_uuid):
        return "%s%s/%s/%s" % (self.baseurl, CONT_EP, tenant_uuid, deposit_uuid)

    def state_url(self, tenant_uuid, deposit_uuid):
        return self.content_url(tenant_uuid, deposit_uuid) + "/state"

    def edit_url(self, tenant_uuid, deposit_uuid):
        return self.content_url(tenant_uuid, deposit_uuid) + "/edit"

    def _to_result(self, resp):
        error = None
        if resp.status_code < 200 or resp.status_code >= 300:
            error = error_summary(resp.content) or \
                    "{0} {1}".format(resp.status_code, resp.reason or "").strip()
        return Result(resp.status_code, resp.content, error)

    def get(self, url, headers: Mapping=None) -> Result:
        """
        send a GET request
        """
        self.log.debug("GET %s", url)
        try:
            resp = requests.get(url, headers=headers, **self._reqkw)
        except requests.RequestException as ex:
            self.log.warning("GET %s failed: %s", url, str(ex))
            return Result(None, None, str(ex))
        return self._to_result(resp)

    def _send_file(self, method, url, filepath, content_type):
        self.log.debug("%s %s < %s", method.upper(), url, filepath)
        try:
            hdrs = {
                "Content-Type": content_type,
                "Content-Length": str(os.stat(filepath).st_size)
            }
            with open(filepath, 'rb') as fd:
                resp = requests.request(method, url, data=fd, headers=hdrs, **self._reqkw)
        except requests.RequestException as ex:
            self.log.warning("%s %s failed: %s", method.upper(), url, str(ex))
            return Result(None, None, str(ex))
        except OSError as ex:
            return Result(None, None, "Unable to read %s: %s" % (filepath, str(ex)))
        return self._to_result(resp)

    def post_file(self, url, filepath, content_type=ATOM_CONTENT_TYPE) -> Result:
        """
        send the contents of a file via a POST request
        """
        return self._send_file("post", url, filepath, content_type)

    def put_file(self, url, filepath, content_type=ATOM_CONTENT_TYPE) -> Result:
        """
        send the contents of a file via a PUT request
        """
        return self._send_file("put", url, filepath, content_type)
