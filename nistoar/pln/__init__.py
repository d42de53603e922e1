"""
Support for preserving a publisher's content into a Private LOCKSS Network (PLN).

This package implements the deposit lifecycle engine:  published content is grouped into
deposits, each deposit is packaged as a BagIt bag (serialized as a zip file) along with an
Atom metadata document, the metadata document is registered with the network's SWORD
service, and the remote processing and preservation state is polled until the network
reports durable preservation.  The :py:class:`~nistoar.pln.depositor.Depositor` drives
all of this for each tenant (e.g. journal) in a single pass.
"""
from .exceptions import *

try:
    from .version import __version__
except ImportError:
    __version__ = "(unset)"

_PLNSYSNAME = "PLN Depositor"
_PLNSYSABBREV = "PLN"

class SystemInfo(object):
    """
    static information about a system (or subsystem) that can be attached to log messages
    and exceptions.
    """
    def __init__(self, sysname, sysabbrev, subsysname="", subsysabbrev="", version=None):
        self.system_name = sysname
        self.system_abbrev = sysabbrev
        self.subsystem_name = subsysname
        self.subsystem_abbrev = subsysabbrev
        self.system_version = version

    def getSysLogger(self):
        """
        return the default logger for this (sub)system
        """
        import logging
        log = logging.getLogger(self.system_abbrev)
        if self.subsystem_abbrev:
            log = log.getChild(self.subsystem_abbrev)
        return log

class PLNSystem(SystemInfo):
    """
    a SystemInfo representing the overall PLN deposit system
    """
    def __init__(self, subsysname="", subsysabbrev=""):
        super(PLNSystem, self).__init__(_PLNSYSNAME, _PLNSYSABBREV, subsysname, subsysabbrev,
                                        __version__)

system = PLNSystem()
