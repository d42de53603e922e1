"""
The deposit status model.

A deposit's progress is recorded as an additive set of milestone flags, represented by
:py:class:`DepositStatus`.  The locally-controlled flags (``PACKAGED``, ``TRANSFERRED``) are set by
this system as it does its work; the remaining flags reflect what the network reports about its
processing (``RECEIVED``, ``VALIDATED``, ``SENT``) and about the LOCKSS preservation layer
(``LOCKSS_RECEIVED``, ``LOCKSS_AGREEMENT``).  The numeric values are persisted and must not be
renumbered; the value 32 is reserved and not used.

The remote states are translated into flags via explicit look-up tables,
:py:data:`PROCESSING_STATES` and :py:data:`LOCKSS_STATES`.  Each entry gives the complete set of
flags that replaces the deposit's current flags.  Later pipeline stages map to supersets of the
earlier ones, so polling in pipeline order never loses a milestone.  Error tokens map to the
same flags as the stage at which the error occurred; the error itself is reported via
:py:data:`STATE_ERROR_MESSAGES`.
"""
from enum import IntFlag
from collections import OrderedDict

class DepositStatus(IntFlag):
    """
    the milestones reached by a deposit
    """
    NEW              = 0
    PACKAGED         = 1     # the bag and Atom document have been built locally
    TRANSFERRED      = 2     # the Atom document was accepted by the network

    # reported by the network's staging server
    RECEIVED         = 4     # the network has retrieved the bag
    VALIDATED        = 8     # the bag passed the network's payload, bag, schema, and virus checks
    SENT             = 16    # the bag was handed off to LOCKSS
    # 32 is reserved

    # reported by LOCKSS
    LOCKSS_RECEIVED  = 64    # LOCKSS has received the bag
    LOCKSS_AGREEMENT = 128   # LOCKSS boxes agree on the content: terminal

    def has(self, flag):
        """
        return True if all the given milestone flags are set
        """
        return (self & flag) == flag

# cumulative bit-sets for each remote stage
_HANDED_OVER = DepositStatus.PACKAGED | DepositStatus.TRANSFERRED
_RECEIVED    = _HANDED_OVER | DepositStatus.RECEIVED
_VALIDATED   = _RECEIVED | DepositStatus.VALIDATED
_SENT        = _VALIDATED | DepositStatus.SENT
_IN_LOCKSS   = _SENT | DepositStatus.LOCKSS_RECEIVED
_PRESERVED   = _IN_LOCKSS | DepositStatus.LOCKSS_AGREEMENT

PROCESSING_STATES = OrderedDict([
    ("depositedByJournal", _HANDED_OVER),
    ("harvest-error",      _HANDED_OVER),
    ("harvested",          _RECEIVED),
    ("payload-validated",  _RECEIVED),
    ("bag-validated",      _RECEIVED),
    ("xml-validated",      _RECEIVED),
    ("virus-checked",      _RECEIVED),
    ("payload-error",      _RECEIVED),
    ("bag-error",          _RECEIVED),
    ("xml-error",          _RECEIVED),
    ("virus-error",        _RECEIVED),
    ("reserialized",       _VALIDATED),
    ("hold",               _VALIDATED),
    ("reserialize-error",  _VALIDATED),
    ("deposit-error",      _VALIDATED),
    ("deposited",          _SENT),
    ("status-error",       _SENT),
])

LOCKSS_IN_PROGRESS = "inProgress"
LOCKSS_AGREEMENT = "agreement"

# an empty token means LOCKSS has nothing to report; it leaves the flags alone
LOCKSS_STATES = OrderedDict([
    ("",                 None),
    (LOCKSS_IN_PROGRESS, _IN_LOCKSS),
    (LOCKSS_AGREEMENT,   _PRESERVED),
])

STATE_ERROR_MESSAGES = {
    "hold":              "The deposit is on hold: the network is not accepting deposits for "
                         "this version of the publishing software",
    "harvest-error":     "The network was unable to retrieve the deposit package",
    "deposit-error":     "The network was unable to send the deposit to LOCKSS",
    "reserialize-error": "The network was unable to reserialize the deposit package",
    "virus-error":       "A virus was detected in the deposit package",
    "xml-error":         "The exported content in the deposit package failed schema validation",
    "payload-error":     "The deposit package payload does not match its checksums",
    "bag-error":         "The deposit package is not a valid bag",
    "status-error":      "The network was unable to retrieve the status from LOCKSS"
}

def as_status(bits):
    """
    convert a stored status value to a DepositStatus.  None (an unset status) is treated as NEW.
    """
    if bits is None:
        return DepositStatus.NEW
    return DepositStatus(int(bits))

def is_new(bits):
    """
    return True if no milestone has been reached
    """
    return bits is not None and int(bits) == 0

def ready_to_package(bits):
    """
    return True if a deposit with the given status needs (re-)packaging
    """
    return not as_status(bits).has(DepositStatus.PACKAGED)

def ready_to_transfer(bits):
    """
    return True if a deposit with the given status is packaged but not yet transferred
    """
    sts = as_status(bits)
    return sts.has(DepositStatus.PACKAGED) and not sts.has(DepositStatus.TRANSFERRED)

def ready_for_remote_update(bits):
    """
    return True if the network should be polled for the status of a deposit with the given status
    """
    if bits is None:
        return True
    sts = as_status(bits)
    return sts.has(DepositStatus.TRANSFERRED) and not sts.has(DepositStatus.LOCKSS_AGREEMENT)

# named filters recognized by the repositories
STATUS_NEW = "new"
STATUS_READY_TO_PACKAGE = "ready_to_package"
STATUS_READY_TO_TRANSFER = "ready_to_transfer"
STATUS_READY_FOR_UPDATE = "ready_for_update"

filters = {
    STATUS_NEW:               is_new,
    STATUS_READY_TO_PACKAGE:  ready_to_package,
    STATUS_READY_TO_TRANSFER: ready_to_transfer,
    STATUS_READY_FOR_UPDATE:  ready_for_remote_update
}

def processing_status_for(token):
    """
    return the complete set of flags implied by a processing state reported by the network, or
    None if the token is not recognized.
    """
    return PROCESSING_STATES.get(token)

def lockss_status_for(token):
    """
    return the complete set of flags implied by a LOCKSS state reported by the network.  None is
    returned if the token implies no change.

    :raise KeyError:  if the token is not recognized
    """
    if token is None:
        token = ""
    return LOCKSS_STATES[token]
