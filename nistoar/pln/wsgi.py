"""
A WSGI application providing the web endpoints that the network calls back to:

``GET /{tenant_path}/{deposit_folder}/deposits/{uuid}``
    download the serialized bag for a deposit
``GET /{tenant_path}/gateway/plugin/PLNGatewayPlugin``
    retrieve a handshake document describing the tenant's deposit configuration
"""
import os, re, logging
from abc import ABCMeta, abstractmethod
from functools import reduce
from logging import Logger
from typing import Callable, Mapping
from wsgiref.headers import Headers

from lxml import etree

from . import system as _sys, __version__
from .config import DEF_DEPOSIT_FOLDER, DEF_NETWORK_URL
from .content import ContentProvider
from .model import SUBMISSION
from .repo import DepositRepository
from .serialize import has_archiver
from .settings import SettingsStore
from .storage import DepositStorage

UUID_RE = re.compile(r'^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$')
GATEWAY_PATH = "gateway/plugin/PLNGatewayPlugin"
HANDSHAKE_ITEM_COUNT = 10
BLOCK_SIZE = 1024 * 64

class Handler(object):
    """
    a default web request handler that also serves as a base class for the
    handlers specialized for the supported resource paths.
    """

    def __init__(self, path: str, wsgienv: dict, start_resp: Callable, config: dict=None,
                 log: Logger=None, app=None):
        self._path = path
        self._env = wsgienv
        self._start = start_resp
        self._hdr = Headers([])
        self._code = 0
        self._msg = "unknown status"
        if config is None:
            config = {}
        self.cfg = config
        self.log = log
        self._app = app
        self._meth = self._env.get('REQUEST_METHOD', 'GET')

    @property
    def app(self):
        """
        the ServiceApp instance that created this handler
        """
        return self._app

    def send_error(self, code, message, content=None, contenttype=None, ashead=None, encoding='utf-8'):
        """
        respond to the client with an error of a given code and reason
        """
        return self._send(code, message, content, contenttype, ashead, encoding)

    def send_ok(self, content=None, contenttype=None, message="OK", code=200, ashead=None,
                encoding='utf-8'):
        """
        respond to the client a response of success.
        """
        return self._send(code, message, content, contenttype, ashead, encoding)

    def _send(self, code, message, content, contenttype, ashead, encoding):
        if ashead is None:
            ashead = self._meth.upper() == "HEAD"
        self.set_response(code, message)
        if content:
            if not isinstance(content, list):
                content = [ content ]
            if not contenttype:
                contenttype = (isinstance(content[0], str) and "text/plain") or "application/octet-stream"
        elif content is None:
            content = []

        content = [(isinstance(c, str) and c.encode(encoding)) or c for c in content]
        if contenttype:
            self.add_header("Content-Type", contenttype)
        if len(content) > 0:
            self.add_header("Content-Length", str(reduce(lambda x, t: x+len(t), content, 0)))
        self.end_headers()
        return (not ashead and content) or []

    def add_header(self, name, value):
        """
        record a name-value pair to be sent as part of the response header.
        """
        self._hdr.add_header(name, value)

    def set_response(self, code, message):
        """
        record the response code and message to be sent when the response is triggered to push out.
        """
        self._code = code
        self._msg = message

    def end_headers(self):
        """
        trigger the delivery of response's header to the web client.
        """
        status = "{0} {1}".format(str(self._code), self._msg)
        self._start(status, self._hdr.items(), None)

    def handle(self):
        """
        handle the request by calling the method of the form ``do_METH()``, where METH is the
        requested HTTP method.
        """
        meth_handler = 'do_'+self._meth
        try:
            if hasattr(self, meth_handler):
                return getattr(self, meth_handler)(self._path)
            elif self._meth == "HEAD" and hasattr(self, 'do_GET'):
                return self.do_GET(self._path, ashead=True)
            else:
                return self.send_error(405, self._meth + " not supported on this resource")
        except Exception as ex:
            if self.log:
                self.log.exception("Unexpected failure: "+str(ex))
            return self.send_error(500, "Server failure")

class NotFoundHandler(Handler):
    """
    a handler that responds to every request with 404 Not Found
    """

    def handle(self):
        return self.send_error(404, "Not Found")

class DepositDownloadHandler(Handler):
    """
    a handler that delivers a deposit's serialized bag
    """

    def __init__(self, tenant, depuuid, path, wsgienv, start_resp, config=None, log=None, app=None):
        super(DepositDownloadHandler, self).__init__(path, wsgienv, start_resp, config, log, app)
        self.tenant = tenant
        self.depuuid = depuuid

    def do_GET(self, path, ashead=False):
        if not UUID_RE.match(self.depuuid):
            self.log.warning("Request for deposit with invalid UUID: %s", self.depuuid)
            return self.send_error(404, "Not Found")

        dep = self.app.deposits.get_by_uuid(self.depuuid, self.tenant.id)
        if not dep:
            self.log.warning("Request for unknown deposit: %s", self.depuuid)
            return self.send_error(404, "Not Found")

        if not self.app.storage.package_exists(dep):
            self.log.warning("Package file for deposit %s not found", self.depuuid)
            return self.send_error(404, "Not Found")

        pkgfile = self.app.storage.package_path(dep)
        self.set_response(200, "OK")
        self.add_header("Content-Type", "application/zip")
        self.add_header("Content-Length", str(os.stat(pkgfile).st_size))
        self.add_header("Content-Disposition",
                        'attachment; filename="%s"' % os.path.basename(pkgfile))
        self.end_headers()
        if ashead:
            return []

        fd = open(pkgfile, 'rb')
        if 'wsgi.file_wrapper' in self._env:
            return self._env['wsgi.file_wrapper'](fd, BLOCK_SIZE)
        return _FileIterator(fd)

class _FileIterator(object):
    def __init__(self, fd, blocksize=BLOCK_SIZE):
        self.fd = fd
        self.blocksize = blocksize

    def __iter__(self):
        try:
            while True:
                buf = self.fd.read(self.blocksize)
                if not buf:
                    break
                yield buf
        finally:
            self.fd.close()

    def close(self):
        self.fd.close()

class HandshakeHandler(Handler):
    """
    a handler that delivers the handshake document that lets the network confirm a tenant's
    deposit configuration
    """

    def __init__(self, tenant, path, wsgienv, start_resp, config=None, log=None, app=None):
        super(HandshakeHandler, self).__init__(path, wsgienv, start_resp, config, log, app)
        self.tenant = tenant

    def make_document(self):
        tset = self.app.settings.for_tenant(self.tenant.id, self.cfg)
        accepted = tset.terms_agreed()

        root = etree.Element("plnplugin")
        etree.SubElement(etree.SubElement(root, "ojsInfo"), "release").text = \
            str(self.cfg.get('app_version', ''))
        plugin = etree.SubElement(root, "pluginInfo")
        etree.SubElement(plugin, "release").text = __version__
        terms = etree.SubElement(plugin, "terms", termsAccepted="yes" if accepted else "no")
        if accepted:
            agreement = tset.terms_of_use_agreement
            for key, data in tset.terms_of_use.items():
                term = etree.SubElement(terms, "term", key=key,
                                        updated=str(data.get('updated') or ''),
                                        accepted=str(agreement.get(key) or ''))
                term.text = data.get('term') or ''

        appinfo = etree.SubElement(root, "applicationInfo")
        etree.SubElement(appinfo, "zipArchive").text = "Yes" if has_archiver() else "No"
        etree.SubElement(root, "pln_network").text = self.cfg.get('network_url', DEF_NETWORK_URL)

        items = list(self.app.content.published_items(self.tenant.id, SUBMISSION))
        items = items[:HANDSHAKE_ITEM_COUNT]
        articles = etree.SubElement(root, "articles", count=str(len(items)))
        for item in items:
            pubdate = item.date_published.isoformat() if item.date_published else ""
            etree.SubElement(articles, "article", id=str(item.id), pubDate=pubdate)

        return etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True)

    def do_GET(self, path, ashead=False):
        return self.send_ok(self.make_document(), "text/xml; charset=utf-8", ashead=ashead)

class ServiceApp(metaclass=ABCMeta):
    """
    a base class WSGI implementation intended to run as a delegate handling a particular path
    within another WSGI application.
    """

    def __init__(self, appname: str, log: Logger, config: Mapping=None):
        self.log = log
        if config is None:
            config = {}
        self.cfg = config
        self._name = appname

    @property
    def name(self):
        """
        a name for the service provided by this ServiceApp instance
        """
        return self._name

    @abstractmethod
    def create_handler(self, env: dict, start_resp: Callable, path: str) -> Handler:
        """
        return a handler instance to handle a particular request to a path
        """
        raise NotImplementedError()

    def handle_path_request(self, env: dict, start_resp: Callable, path: str=None):
        """
        respond to a request on a particular (relative) URL path.
        """
        if path is None:
            path = env.get('PATH_INFO', '')
        return self.create_handler(env, start_resp, path).handle()

    def __call__(self, env, start_resp):
        return self.handle_path_request(env, start_resp)

class PLNCallbackApp(ServiceApp):
    """
    the WSGI application serving deposit packages and handshake documents to the network
    """

    def __init__(self, config: Mapping, content: ContentProvider, deposits: DepositRepository,
                 settings: SettingsStore, storage: DepositStorage=None, log: Logger=None):
        if not log:
            log = _sys.getSysLogger().getChild("wsgi")
        super(PLNCallbackApp, self).__init__("pln-callback", log, config)
        self.content = content
        self.deposits = deposits
        self.settings = settings
        if not storage:
            storage = DepositStorage.from_config(self.cfg)
        self.storage = storage
        self.deposit_folder = self.cfg.get('deposit_folder') or DEF_DEPOSIT_FOLDER

    def create_handler(self, env, start_resp, path):
        parts = [p for p in path.strip('/').split('/') if p]
        tenant = None
        if parts:
            tenant = self.content.get_tenant_by_path(parts[0])
        if not tenant:
            return NotFoundHandler(path, env, start_resp, self.cfg, self.log, self)

        rest = parts[1:]
        if len(rest) == 3 and rest[0] == self.deposit_folder and rest[1] == "deposits":
            return DepositDownloadHandler(tenant, rest[2], path, env, start_resp, self.cfg,
                                          self.log, self)
        if '/'.join(rest) == GATEWAY_PATH:
            return HandshakeHandler(tenant, path, env, start_resp, self.cfg, self.log, self)
        return NotFoundHandler(path, env, start_resp, self.cfg, self.log, self)

def app(config: Mapping):
    """
    create the WSGI application from the given configuration
    """
    from .depositor import Depositor
    dep = Depositor.from_config(config)
    return PLNCallbackApp(dep.cfg, dep.content, dep.deposits, dep.settings, dep.storage)
