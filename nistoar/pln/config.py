"""
Utilities for loading and merging the configuration of the PLN deposit system.

A configuration is a (nested) dictionary, typically read from a YAML or JSON file.  The
recognized top-level parameters are:

:param str working_dir:    the root directory under which deposit packages are built; each tenant
                           gets its own subdirectory.
:param str network_url:    the base URL of the PLN's SWORD service
:param str deposit_folder: the name of the per-tenant subdirectory holding deposits (default: "pln")
:param int object_threshold: the number of Submission objects batched into one deposit
:param str object_type:    the default content kind to deposit ("Issue" or "Submission")
:param str app_name:       the name of the publishing application reported to the network
:param str app_version:    the version of the publishing application reported to the network
:param str version_tag:    the bag-info.txt tag used to record ``app_version``
:param dict http:          HTTP client options: ``timeout`` (seconds) and ``verify`` (bool)
:param dict repository:    storage for deposit records: ``type`` (``inmem`` or ``fsbased``) and ``dir``
:param dict settings:      storage for tenant settings: ``type`` (``inmem`` or ``fsbased``) and ``file``
:param dict content_provider:  the ``factory`` (as "module:callable") that creates the
                           :py:class:`~nistoar.pln.content.ContentProvider` plus its config
"""
import os, sys, json, logging, importlib
from collections.abc import Mapping
from copy import deepcopy

import yaml

from .exceptions import ConfigurationException

DEF_NETWORK_URL = "https://pkp-pn.lib.sfu.ca"
DEF_DEPOSIT_FOLDER = "pln"
DEF_OBJECT_THRESHOLD = 10
DEF_VERSION_TAG = "PKP-PLN-OJS-Version"

DEF_CONFIG = {
    "network_url":      DEF_NETWORK_URL,
    "deposit_folder":   DEF_DEPOSIT_FOLDER,
    "object_threshold": DEF_OBJECT_THRESHOLD,
    "object_type":      "Issue",
    "checksum_type":    "SHA-1",
    "app_name":         "ojs",
    "app_version":      "(unknown)",
    "version_tag":      DEF_VERSION_TAG,
    "http": {
        "timeout": 60,
        "verify":  True
    },
    "repository": {
        "type": "inmem"
    },
    "settings": {
        "type": "inmem"
    }
}

DEF_LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"
NORMAL = logging.INFO - 5

def load_from_file(configfile):
    """
    read the configuration from the given file and return it as a dictionary.
    The file's format is determined by its extension:  ".yml" or ".yaml" is read as YAML;
    everything else is read as JSON.

    :raise IOError:     if the file cannot be opened
    :raise ValueError:  if the contents cannot be parsed
    """
    with open(configfile) as fd:
        if configfile.endswith('.yml') or configfile.endswith('.yaml'):
            out = yaml.safe_load(fd)
        else:
            out = json.load(fd)
    if out is None:
        out = {}
    if not isinstance(out, Mapping):
        raise ValueError(configfile + ": configuration is not a dictionary")
    return out

def merge_config(primary, defconf):
    """
    merge the data from two configurations, giving precedence to the primary.  Dictionaries
    are merged recursively; all other values in the primary replace those in the default.
    Neither input is modified.

    :param dict primary:  the dictionary with the values that should override the defaults
    :param dict defconf:  the default configuration
    :rtype: dict
    """
    out = deepcopy(defconf)
    for key in primary:
        if key in out and isinstance(out[key], Mapping) and isinstance(primary[key], Mapping):
            out[key] = merge_config(primary[key], out[key])
        else:
            out[key] = deepcopy(primary[key])
    return out

def with_defaults(config):
    """
    return a copy of the given configuration completed with the system defaults
    """
    if config is None:
        config = {}
    return merge_config(config, DEF_CONFIG)

def get_required(config, param):
    """
    return a required configuration parameter or raise a ConfigurationException if missing.
    The parameter name may be a dot-delimited path into nested dictionaries.
    """
    val = config
    for p in param.split('.'):
        if not isinstance(val, Mapping) or val.get(p) is None:
            raise ConfigurationException("Missing required config parameter: "+param)
        val = val[p]
    return val

def load_factory(ref):
    """
    resolve a reference of the form "module.path:callable" into the callable it names.

    :raise ConfigurationException:  if the reference is malformed or cannot be imported
    """
    if not isinstance(ref, str) or ':' not in ref:
        raise ConfigurationException("Factory reference not of form 'module:callable': "+str(ref))
    modname, attr = ref.split(':', 1)
    try:
        mod = importlib.import_module(modname)
        return getattr(mod, attr)
    except (ImportError, AttributeError) as ex:
        raise ConfigurationException("Unable to load factory, %s: %s" % (ref, str(ex)), cause=ex)

_log_handler = None

def configure_log(logfile=None, level=None, format=None, config=None, addstderr=False):
    """
    configure the root logger to write messages to a file (and optionally, standard error).

    :param str logfile:    the path to the log file; if relative, it is taken to be relative to
                           the ``working_dir`` configuration parameter (if set).  If None, the
                           ``logfile`` configuration parameter is consulted.
    :param int   level:    the minimum level of messages to record
    :param str  format:    the format of the log messages
    :param dict config:    the system configuration
    :param bool|str addstderr:  if True, also send messages to standard error; if a str, use it
                           as the message format for the standard error handler.
    """
    global _log_handler
    if not config:
        config = {}
    if not logfile:
        logfile = config.get('logfile')
    if not level:
        level = config.get('loglevel', NORMAL)
    if isinstance(level, str):
        level = logging.getLevelName(level)
    if not format:
        format = DEF_LOG_FORMAT

    rootlog = logging.getLogger()
    if logfile:
        if not os.path.isabs(logfile) and config.get('working_dir'):
            logfile = os.path.join(config['working_dir'], logfile)
        if _log_handler:
            rootlog.removeHandler(_log_handler)
        _log_handler = logging.FileHandler(logfile)
        _log_handler.setFormatter(logging.Formatter(format))
        rootlog.addHandler(_log_handler)

    if addstderr:
        if not isinstance(addstderr, str):
            addstderr = "%(name)s %(levelname)s: %(message)s"
        hdlr = logging.StreamHandler(sys.stderr)
        hdlr.setFormatter(logging.Formatter(addstderr))
        rootlog.addHandler(hdlr)

    rootlog.setLevel(level)
    if not rootlog.handlers:
        rootlog.addHandler(logging.NullHandler())
